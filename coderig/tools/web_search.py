# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Web search tool.

The search runs inside providers that offer live search; this tool only
validates the request and describes it back to the model.
"""

from dataclasses import dataclass, field

from ..errors import ParamError
from .base import BaseTool, ToolInfo, ToolResponse

SEARCH_MODES = ("auto", "on", "off")
SOURCE_TYPES = ("web", "x", "news", "rss")
MAX_RESULTS_LIMIT = 20
MAX_WEBSITES = 5
MAX_X_HANDLES = 10


@dataclass
class WebSearchSource:
    type: str
    country: str | None = None
    excluded_websites: list[str] = field(default_factory=list)
    allowed_websites: list[str] = field(default_factory=list)
    safe_search: bool | None = None
    included_x_handles: list[str] = field(default_factory=list)
    excluded_x_handles: list[str] = field(default_factory=list)
    post_favorite_count: int | None = None
    post_view_count: int | None = None
    links: list[str] = field(default_factory=list)

    def has_x_params(self):
        return bool(
            self.included_x_handles
            or self.excluded_x_handles
            or self.post_favorite_count is not None
            or self.post_view_count is not None
        )

    def has_web_params(self):
        return bool(
            self.country is not None
            or self.excluded_websites
            or self.allowed_websites
            or self.safe_search is not None
        )


@dataclass
class WebSearchParams:
    query: str
    mode: str | None = None
    max_search_results: int | None = None
    from_date: str | None = None
    to_date: str | None = None
    return_citations: bool | None = None
    sources: list[WebSearchSource] = field(default_factory=list)


def _check_date(name, value):
    if value is not None and (len(value) != 10 or value[4] != "-" or value[7] != "-"):
        raise ValueError(f"{name} must be in YYYY-MM-DD format, got: {value}")


def validate_source(source):
    """Raise ValueError when a source's parameters are inconsistent."""
    if source.type not in SOURCE_TYPES:
        raise ValueError(f"invalid source type: {source.type} (must be web, x, news, or rss)")

    if len(source.excluded_websites) > MAX_WEBSITES:
        raise ValueError(
            f"excluded_websites cannot exceed {MAX_WEBSITES} entries, got: {len(source.excluded_websites)}"
        )
    if len(source.allowed_websites) > MAX_WEBSITES:
        raise ValueError(
            f"allowed_websites cannot exceed {MAX_WEBSITES} entries, got: {len(source.allowed_websites)}"
        )
    if source.excluded_websites and source.allowed_websites:
        raise ValueError("cannot use both excluded_websites and allowed_websites in the same source")

    if len(source.included_x_handles) > MAX_X_HANDLES:
        raise ValueError(
            f"included_x_handles cannot exceed {MAX_X_HANDLES} entries, got: {len(source.included_x_handles)}"
        )
    if len(source.excluded_x_handles) > MAX_X_HANDLES:
        raise ValueError(
            f"excluded_x_handles cannot exceed {MAX_X_HANDLES} entries, got: {len(source.excluded_x_handles)}"
        )
    if source.included_x_handles and source.excluded_x_handles:
        raise ValueError("cannot use both included_x_handles and excluded_x_handles in the same source")

    if len(source.links) > 1:
        raise ValueError(f"RSS source can only have 1 link, got: {len(source.links)}")

    if source.type == "web":
        if source.has_x_params():
            raise ValueError("X-specific parameters not allowed for web source")
        if source.links:
            raise ValueError("RSS links not allowed for web source")
    elif source.type == "x":
        if source.has_web_params():
            raise ValueError("web/news-specific parameters not allowed for X source")
        if source.links:
            raise ValueError("RSS links not allowed for X source")
    elif source.type == "news":
        if source.has_x_params():
            raise ValueError("X-specific parameters not allowed for news source")
        if source.allowed_websites:
            raise ValueError("allowed_websites not supported for news source")
        if source.links:
            raise ValueError("RSS links not allowed for news source")
    else:
        if source.has_web_params() or source.has_x_params():
            raise ValueError("only links parameter allowed for RSS source")
        if not source.links:
            raise ValueError("RSS source requires at least one link")


def validate_search(params):
    if params.mode is not None and params.mode not in SEARCH_MODES:
        raise ValueError(f"mode must be 'auto', 'on', or 'off', got: {params.mode}")
    if params.max_search_results is not None and not 1 <= params.max_search_results <= MAX_RESULTS_LIMIT:
        raise ValueError(
            f"max_search_results must be between 1 and {MAX_RESULTS_LIMIT}, got: {params.max_search_results}"
        )
    _check_date("from_date", params.from_date)
    _check_date("to_date", params.to_date)
    for index, source in enumerate(params.sources):
        try:
            validate_source(source)
        except ValueError as error:
            raise ValueError(f"source {index}: {error}") from error


def describe_search(params):
    description = f"Searching the web for: {params.query}"
    if params.mode is not None and params.mode != "auto":
        description += f" (mode: {params.mode})"
    if params.max_search_results is not None:
        description += f" (max results: {params.max_search_results})"
    if params.from_date and params.to_date:
        description += f" (date range: {params.from_date} to {params.to_date})"
    elif params.from_date:
        description += f" (from: {params.from_date})"
    elif params.to_date:
        description += f" (until: {params.to_date})"
    if params.sources:
        description += f" (sources: [{' '.join(source.type for source in params.sources)}])"
    return description


class WebSearchTool(BaseTool):
    """Validate and describe a provider-side live search."""

    params_type = WebSearchParams

    def info(self):
        string_list = {"type": "array", "items": {"type": "string"}}
        return ToolInfo(
            name="web_search",
            description=(
                "Search the web for current information with live search. Supports web, X, "
                "news and RSS sources, date filtering and citations."
            ),
            parameters={
                "query": {"type": "string", "description": "The search query to execute"},
                "mode": {
                    "type": "string",
                    "enum": list(SEARCH_MODES),
                    "description": "Search mode: 'auto' (default), 'on', or 'off'",
                },
                "max_search_results": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_RESULTS_LIMIT,
                    "description": f"Maximum number of search results (1-{MAX_RESULTS_LIMIT})",
                },
                "from_date": {"type": "string", "description": "Start date in YYYY-MM-DD format"},
                "to_date": {"type": "string", "description": "End date in YYYY-MM-DD format"},
                "return_citations": {"type": "boolean", "description": "Whether to return citations"},
                "sources": {
                    "type": "array",
                    "description": "List of data sources to search",
                    "items": {
                        "type": "object",
                        "properties": {
                            "type": {"type": "string", "enum": list(SOURCE_TYPES)},
                            "country": {"type": "string", "description": "ISO alpha-2 country code"},
                            "excluded_websites": {**string_list, "maxItems": MAX_WEBSITES},
                            "allowed_websites": {**string_list, "maxItems": MAX_WEBSITES},
                            "safe_search": {"type": "boolean"},
                            "included_x_handles": {**string_list, "maxItems": MAX_X_HANDLES},
                            "excluded_x_handles": {**string_list, "maxItems": MAX_X_HANDLES},
                            "post_favorite_count": {"type": "integer", "minimum": 0},
                            "post_view_count": {"type": "integer", "minimum": 0},
                            "links": {**string_list, "maxItems": 1},
                        },
                        "required": ["type"],
                    },
                },
            },
            required=["query"],
        )

    def execute(self, ctx, params):
        if not params.query:
            raise ParamError("Search query cannot be empty")
        try:
            validate_search(params)
        except ValueError as error:
            raise ParamError(f"Invalid Live Search parameters: {error}") from error
        return ToolResponse.text(describe_search(params))
