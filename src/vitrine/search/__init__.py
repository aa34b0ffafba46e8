"""
Client-side catalog search.

This package contains the search components:
- index: forward-tokenized product index rebuilt from the bulk summary list
- query: debounced query execution, ranking caps, result page filters and pagination
- suggestions: category facets, related terms and spelling corrections
"""

from .index import INDEX_CACHE_KEY, INDEX_RESOURCE_TYPE, IndexMatch, SearchIndex
from .query import Debouncer, QueryExecutor, available_filters, sort_products
from .suggestions import category_facets, related_suggestions, spelling_suggestion

__all__ = [
    "SearchIndex",
    "IndexMatch",
    "INDEX_CACHE_KEY",
    "INDEX_RESOURCE_TYPE",
    "QueryExecutor",
    "Debouncer",
    "available_filters",
    "sort_products",
    "category_facets",
    "related_suggestions",
    "spelling_suggestion",
]
