"""
Forward-tokenized product search index.

The index is rebuilt in full from the bulk product summary list; there is no
incremental append. Every prefix of every folded word token is posted, so a
query token matches any document token it is a prefix of.
"""

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set

from ..catalog import CatalogClient, parse_products
from ..errors import CatalogFetchError, IndexUnavailableError
from ..models import CategoryFacet, HighlightSpan, IndexedDocument, ProductSummary
from .text import fold, prefixes, token_spans, tokenize

if TYPE_CHECKING:
    from ..cache.adaptive import AdaptiveCacheManager

logger = logging.getLogger(__name__)

INDEX_CACHE_KEY = "search:index"
INDEX_RESOURCE_TYPE = "search-index"

# Relative weight of a match in each indexed field
FIELD_WEIGHTS: Dict[str, int] = {
    "name": 5,
    "category": 3,
    "description": 3,
    "vendor_name": 2,
}

EXACT_TOKEN_FACTOR = 2
EXACT_NAME_BONUS = 50
NAME_PREFIX_BONUS = 30


@dataclass
class IndexMatch:
    """A document matching every query token, with its relevance score."""

    position: int
    score: float
    tokens: List[str]


@dataclass
class _FieldTokens:
    tokens: Set[str]
    prefixes: Set[str]


class SearchIndex:
    """In-memory forward index over the catalog's product summaries."""

    def __init__(self):
        self._products: List[ProductSummary] = []
        self._documents: List[IndexedDocument] = []
        self._postings: Dict[str, Set[int]] = {}
        self._fields: List[Dict[str, _FieldTokens]] = []
        self._categories: List[CategoryFacet] = []
        self._ready = False
        self.built_at: Optional[float] = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def products(self) -> List[ProductSummary]:
        return self._products

    @property
    def documents(self) -> List[IndexedDocument]:
        return self._documents

    @property
    def categories(self) -> List[CategoryFacet]:
        """Every catalog category with its product count, most populated first."""
        return list(self._categories)

    def __len__(self) -> int:
        return len(self._documents)

    def rebuild(self, products: Sequence[Any]) -> int:
        """Replace the whole index with the given products.

        Returns:
            Number of indexed documents
        """
        started = time.perf_counter()
        parsed = parse_products(list(products))

        documents: List[IndexedDocument] = []
        postings: Dict[str, Set[int]] = {}
        fields: List[Dict[str, _FieldTokens]] = []
        category_counts: Dict[str, int] = {}

        for position, product in enumerate(parsed):
            document = IndexedDocument.from_product(position, product)
            documents.append(document)

            doc_fields = {}
            for field_name in FIELD_WEIGHTS:
                tokens = set(tokenize(getattr(document, field_name)))
                field_prefixes = {p for token in tokens for p in prefixes(token)}
                doc_fields[field_name] = _FieldTokens(tokens=tokens, prefixes=field_prefixes)
                for prefix in field_prefixes:
                    postings.setdefault(prefix, set()).add(position)
            fields.append(doc_fields)

            if document.category:
                category_counts[document.category] = category_counts.get(document.category, 0) + 1

        self._products = parsed
        self._documents = documents
        self._postings = postings
        self._fields = fields
        self._categories = [
            CategoryFacet(name=name, count=count)
            for name, count in sorted(category_counts.items(), key=lambda item: (-item[1], item[0]))
        ]
        self._ready = True
        self.built_at = time.time()

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Search index built: {len(documents)} products, {len(postings)} prefixes "
            f"({elapsed_ms:.1f}ms)"
        )
        return len(documents)

    async def load(
        self,
        catalog: CatalogClient,
        cache: Optional["AdaptiveCacheManager"] = None,
    ) -> bool:
        """Fetch the bulk product list and rebuild the index from it.

        When a cache manager is given the fetch goes through it, so a fresh or
        stale-but-usable copy of the product list avoids the network. A failed
        fetch leaves the index uninitialized; no retry is scheduled here.
        """
        try:
            if cache is not None:
                records = await cache.get_or_fetch(
                    INDEX_CACHE_KEY, catalog.fetch_raw, resource_type=INDEX_RESOURCE_TYPE
                )
            else:
                records = await catalog.fetch_raw()
        except CatalogFetchError as e:
            logger.warning(f"Search index unavailable, bulk fetch failed: {e.message}")
            return False

        self.rebuild(records)
        return True

    def search(self, term: str) -> List[IndexMatch]:
        """Rank documents where every query token prefix-matches a document token.

        Raises:
            IndexUnavailableError: if the index has not been built
        """
        if not self._ready:
            raise IndexUnavailableError()

        query_tokens = list(dict.fromkeys(tokenize(term)))
        if not query_tokens:
            return []

        candidates: Optional[Set[int]] = None
        for token in query_tokens:
            matched = self._postings.get(token, set())
            candidates = set(matched) if candidates is None else candidates & matched
            if not candidates:
                return []

        folded_term = fold(term.strip())
        matches = []
        for position in candidates or ():
            score = self._score(position, query_tokens, folded_term)
            matches.append(IndexMatch(position=position, score=score, tokens=query_tokens))

        matches.sort(key=lambda m: (-m.score, len(self._documents[m.position].name), m.position))
        return matches

    def _score(self, position: int, query_tokens: List[str], folded_term: str) -> float:
        doc_fields = self._fields[position]
        score = 0.0
        for token in query_tokens:
            best = 0
            for field_name, weight in FIELD_WEIGHTS.items():
                field_tokens = doc_fields[field_name]
                if token in field_tokens.tokens:
                    best = max(best, weight * EXACT_TOKEN_FACTOR)
                elif token in field_tokens.prefixes:
                    best = max(best, weight)
            score += best

        folded_name = fold(self._documents[position].name)
        if folded_name == folded_term:
            score += EXACT_NAME_BONUS
        elif folded_name.startswith(folded_term):
            score += NAME_PREFIX_BONUS
        return score

    def document(self, position: int) -> IndexedDocument:
        return self._documents[position]

    def product(self, position: int) -> ProductSummary:
        return self._products[position]

    def highlight(
        self,
        position: int,
        query_tokens: Sequence[str],
        fields: Sequence[str] = ("name", "description"),
    ) -> List[HighlightSpan]:
        """Character spans of the matched prefix in each word a query token matches."""
        document = self._documents[position]
        spans = []
        for field_name in fields:
            text = getattr(document, field_name)
            for word, start, end in token_spans(text):
                matched = [t for t in query_tokens if word.startswith(t)]
                if matched:
                    length = max(len(t) for t in matched)
                    spans.append(HighlightSpan(field=field_name, start=start, end=start + length))
        return spans
