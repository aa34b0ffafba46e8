"""Category facets, related-term suggestions and "did you mean" corrections."""

import re
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional

from ..models import CategoryFacet, ProductSummary
from .text import fold

_WHITESPACE_RE = re.compile(r"\s+")


def category_facets(products: Iterable[ProductSummary], limit: Optional[int] = 3) -> List[CategoryFacet]:
    """Count matched products per category, most populated first."""
    counts: Dict[str, int] = {}
    for product in products:
        category = product.primary_category
        if category:
            counts[category] = counts.get(category, 0) + 1

    facets = [
        CategoryFacet(name=name, count=count)
        for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]
    return facets if limit is None else facets[:limit]


def related_suggestions(products: List[ProductSummary], term: str, limit: int = 3) -> List[str]:
    """Related search terms harvested from the names of the top matches.

    Candidates are name words containing the term, adjacent word pairs, short
    full names and matching categories; they are ranked by how often they occur
    and then by length, and the literal term itself is excluded.
    """
    folded_term = fold(term.strip())
    candidates: List[str] = []

    for product in products[:10]:
        words = _WHITESPACE_RE.split(product.name.strip())
        if len(words) > 1:
            candidates.extend(word for word in words if folded_term in fold(word))
            candidates.extend(f"{words[i]} {words[i + 1]}" for i in range(len(words) - 1))
            if len(product.name) < 30:
                candidates.append(product.name)
        elif words and words[0]:
            candidates.append(product.name)

        if product.primary_category and folded_term in fold(product.primary_category):
            candidates.append(product.primary_category)

    counts: Dict[str, int] = {}
    originals: Dict[str, str] = {}
    for candidate in candidates:
        candidate = candidate.strip()
        if not candidate or len(candidate) >= 50:
            continue
        key = candidate.lower()
        counts[key] = counts.get(key, 0) + 1
        # Prefer the shortest original spelling, which keeps its accents
        if key not in originals or len(candidate) < len(originals[key]):
            originals[key] = candidate

    ranked = sorted(counts, key=lambda key: (-counts[key], len(key)))
    return [originals[key] for key in ranked if key != term.strip().lower()][:limit]


def similarity(a: str, b: str) -> float:
    """Similarity between two folded strings in [0, 1]."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return min(len(a), len(b)) / max(len(a), len(b))
    return SequenceMatcher(None, a, b).ratio()


def spelling_suggestion(
    term: str,
    products: Iterable[ProductSummary],
    threshold: float = 0.7,
) -> Optional[str]:
    """Best product name resembling a possibly misspelled term.

    Each name is compared both as a whole and word by word (words shorter
    than 3 characters are ignored); the highest similarity above the
    threshold wins. A term that already appears verbatim as a name or a
    name word gets no suggestion.
    """
    folded_term = fold(term.strip())
    if not folded_term:
        return None

    best_name: Optional[str] = None
    best_score = threshold
    for product in products:
        name = product.name
        if not name or len(name) < len(folded_term) / 2:
            continue
        folded_name = fold(name)
        words = folded_name.split()
        if folded_term == folded_name or folded_term in words:
            # Spelled the way the catalog spells it
            return None
        score = similarity(folded_term, folded_name)
        for word in words:
            if len(word) >= 3:
                score = max(score, similarity(folded_term, word))
        if score > best_score:
            best_name, best_score = name, score

    return best_name
