"""External service clients."""

from callprep.clients.search_client import (
    PassExecution,
    SearchClient,
    SearchRequest,
    SearchResponse,
    parse_json_content,
)

__all__ = [
    "PassExecution",
    "SearchClient",
    "SearchRequest",
    "SearchResponse",
    "parse_json_content",
]
