"""
Query execution over the search index: debounced free-text queries, ranked and
capped result lists, category facets and typo recovery.
"""

import asyncio
import inspect
import logging
import math
from typing import Any, Awaitable, Callable, Generic, List, Optional, Set, TypeVar, Union

from ..config import SearchConfig, get_config_manager
from ..errors import IndexUnavailableError
from ..models import (
    Pagination,
    PriceRange,
    ProductSummary,
    QueryResultEntry,
    SearchFilters,
    SearchPage,
    SearchResponse,
    SearchSort,
)
from .index import IndexMatch, SearchIndex
from .suggestions import category_facets, related_suggestions, spelling_suggestion
from .text import fold

logger = logging.getLogger(__name__)

T = TypeVar("T")

ResultsCallback = Callable[[SearchResponse], Union[None, Awaitable[None]]]


class Debouncer(Generic[T]):
    """Delay a callback until calls stop arriving for a quiet period.

    Every ``trigger`` cancels the pending timer task, so only the last value
    submitted within the window reaches the callback. A call that has already
    fired runs to completion.
    """

    def __init__(self, delay: float, callback: Callable[[T], Any]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None
        self._firing: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, value: T) -> asyncio.Task:
        self.cancel()
        self._task = asyncio.create_task(self._fire(value))
        return self._task

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task not in self._firing:
            task.cancel()

    async def wait(self) -> None:
        """Wait for the pending call and any call still running to finish."""
        tasks = list(self._firing)
        if self._task is not None and self._task not in self._firing:
            tasks.append(self._task)
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _fire(self, value: T) -> None:
        await asyncio.sleep(self.delay)
        task = asyncio.current_task()
        self._firing.add(task)
        try:
            result = self.callback(value)
            if inspect.isawaitable(result):
                await result
        finally:
            self._firing.discard(task)


class QueryExecutor:
    """Turns free-text terms into ranked, bounded result lists."""

    def __init__(
        self,
        index: SearchIndex,
        config: Optional[SearchConfig] = None,
        on_results: Optional[ResultsCallback] = None,
    ):
        self.index = index
        self.config = config or get_config_manager().get_search_config()
        self.on_results = on_results
        self.latest: SearchResponse = SearchResponse.empty()
        self.queries_executed = 0
        self._latest_term = ""
        self._recent_searches: List[str] = []
        self._deliveries: Set[asyncio.Future] = set()
        self._debouncer: Debouncer[str] = Debouncer(
            self.config.debounce_ms / 1000, self._run_submitted
        )

    def _too_short(self, term: str, minimum: Optional[int] = None) -> bool:
        minimum = self.config.min_query_length if minimum is None else minimum
        return not term or len(term.strip()) < minimum

    def search(self, term: str) -> SearchResponse:
        """Inline widget query, capped at the configured inline limit."""
        return self._execute(term, self.config.inline_limit)

    def search_all(self, term: str) -> SearchResponse:
        """Full results page query, unbounded."""
        return self._execute(term, None)

    def _execute(self, term: str, limit: Optional[int]) -> SearchResponse:
        if self._too_short(term):
            return SearchResponse.empty(term)

        try:
            matches = self.index.search(term)
        except IndexUnavailableError:
            logger.debug(f"Index not ready, returning no results for '{term}'")
            return SearchResponse.empty(term)

        self.queries_executed += 1
        capped = matches if limit is None else matches[:limit]
        results = [self._to_entry(match) for match in capped]

        matched_products = [self.index.product(match.position) for match in matches]
        suggestions = related_suggestions(matched_products, term, self.config.suggestion_limit)

        did_you_mean = None
        stripped = term.strip()
        if len(matches) < self.config.spelling_max_results and len(stripped) > self.config.spelling_min_length:
            candidate = spelling_suggestion(stripped, self.index.products, self.config.spelling_threshold)
            if candidate and candidate.lower() != stripped.lower():
                did_you_mean = candidate
                suggestions = [candidate] + [s for s in suggestions if s != candidate]
                suggestions = suggestions[: self.config.suggestion_limit]

        response = SearchResponse(
            term=term,
            results=results,
            categories=category_facets(matched_products, self.config.facet_limit),
            suggestions=suggestions,
            did_you_mean=did_you_mean,
            total=len(matches),
        )

        if results:
            self._remember(term)

        logger.debug(f"Query '{term}': {len(matches)} matches, returning {len(results)}")
        return response

    def _to_entry(self, match: IndexMatch) -> QueryResultEntry:
        product = self.index.product(match.position)
        return QueryResultEntry(
            product_id=product.id,
            position=match.position,
            score=match.score,
            product=product,
            highlights=self.index.highlight(match.position, match.tokens),
        )

    def search_page(
        self,
        term: str,
        page: int = 1,
        per_page: Optional[int] = None,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: Union[SearchSort, str, None] = None,
    ) -> SearchPage:
        """One page of the full results listing for a term.

        Matches are narrowed by category (accent- and case-insensitive) and
        an inclusive price range, ordered by ``sort`` (relevance by default,
        also for unknown values) and then paginated. ``filters`` describes
        the narrowed result set.
        """
        per_page = per_page or self.config.page_size
        page = max(page, 1)

        if self._too_short(term, self.config.page_min_query_length):
            return SearchPage(term=term, pagination=Pagination(page=1, per_page=per_page))

        products = [entry.product for entry in self.search_all(term).results]

        if category:
            wanted = fold(category)
            products = [p for p in products if any(fold(c) == wanted for c in p.categories)]
        if min_price is not None:
            products = [p for p in products if p.price >= min_price]
        if max_price is not None:
            products = [p for p in products if p.price <= max_price]

        products = sort_products(products, sort)

        total = len(products)
        total_pages = math.ceil(total / per_page) if total else 0
        start = (page - 1) * per_page

        return SearchPage(
            term=term,
            products=products[start : start + per_page],
            pagination=Pagination(
                total=total,
                page=page,
                per_page=per_page,
                total_pages=total_pages,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
            filters=available_filters(products),
        )

    def submit(self, term: str) -> None:
        """Debounced entry point for keystrokes.

        Terms below the minimum length clear the published results at once
        and cancel any pending query.
        """
        self._latest_term = term
        if self._too_short(term):
            self._debouncer.cancel()
            result = self._publish(term, SearchResponse.empty(term))
            if inspect.isawaitable(result):
                delivery = asyncio.ensure_future(result)
                self._deliveries.add(delivery)
                delivery.add_done_callback(self._delivered)
            return
        self._debouncer.trigger(term)

    async def wait_idle(self) -> None:
        """Wait until the pending debounced query and any cleared-results delivery are done."""
        await self._debouncer.wait()
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    def cancel_pending(self) -> None:
        self._debouncer.cancel()

    def _delivered(self, delivery: asyncio.Future) -> None:
        self._deliveries.discard(delivery)
        if not delivery.cancelled() and delivery.exception() is not None:
            logger.warning(f"Results callback failed while clearing: {delivery.exception()}")

    async def _run_submitted(self, term: str) -> None:
        response = self.search(term)
        result = self._publish(term, response)
        if inspect.isawaitable(result):
            await result

    def _publish(self, term: str, response: SearchResponse) -> Any:
        # A newer term was entered while this one resolved
        if term != self._latest_term:
            logger.debug(f"Discarding stale results for '{term}'")
            return None
        self.latest = response
        if self.on_results is not None:
            return self.on_results(response)
        return None

    @property
    def recent_searches(self) -> List[str]:
        return list(self._recent_searches)

    def clear_recent_searches(self) -> None:
        self._recent_searches = []

    def _remember(self, term: str) -> None:
        term = term.strip()
        if not term:
            return
        if term in self._recent_searches:
            self._recent_searches.remove(term)
        self._recent_searches.insert(0, term)
        del self._recent_searches[self.config.recent_search_limit :]


def _parse_sort(sort: Union[SearchSort, str, None]) -> SearchSort:
    if sort is None:
        return SearchSort.RELEVANCE
    try:
        return SearchSort(sort)
    except ValueError:
        logger.debug(f"Unknown sort '{sort}', using relevance")
        return SearchSort.RELEVANCE


def sort_products(
    products: List[ProductSummary], sort: Union[SearchSort, str, None] = None
) -> List[ProductSummary]:
    """Reorder relevance-ranked products; the sort is stable, so ties keep rank order."""
    order = _parse_sort(sort)
    if order is SearchSort.PRICE_ASC:
        return sorted(products, key=lambda p: p.price)
    if order is SearchSort.PRICE_DESC:
        return sorted(products, key=lambda p: p.price, reverse=True)
    if order is SearchSort.NAME_ASC:
        return sorted(products, key=lambda p: fold(p.name))
    if order is SearchSort.NAME_DESC:
        return sorted(products, key=lambda p: fold(p.name), reverse=True)
    return list(products)


def available_filters(products: List[ProductSummary]) -> SearchFilters:
    """Categories, price range and vendors present in a result set.

    Products without a price (0) do not widen the price range.
    """
    categories = sorted({c for p in products for c in p.categories if c})
    vendors = sorted({p.vendor_name for p in products if p.vendor_name})
    prices = [p.price for p in products if p.price]
    price_range = PriceRange(min=min(prices), max=max(prices)) if prices else None
    return SearchFilters(categories=categories, price_range=price_range, vendors=vendors)
