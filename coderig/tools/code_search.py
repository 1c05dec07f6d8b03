# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Sourcegraph tool: search public repositories through the GraphQL API."""

import json
import logging
from dataclasses import dataclass

from ..context import run_cancellable
from ..errors import ExternalFailure, ParamError
from .base import BaseTool, ToolInfo, ToolResponse
from .constants import DEFAULT_FETCH_TIMEOUT, MAX_FETCH_TIMEOUT
from .web import clamp_seconds, http_request

logger = logging.getLogger(__name__)

SOURCEGRAPH_URL = "https://sourcegraph.com/.api/graphql"
DEFAULT_COUNT = 10
MAX_COUNT = 20
DEFAULT_CONTEXT_WINDOW = 10
MAX_RENDERED_RESULTS = 10

SEARCH_QUERY = (
    "query Search($query: String!) { search(query: $query, version: V2, patternType: keyword ) "
    "{ results { matchCount, limitHit, resultCount, approximateResultCount, missing { name }, "
    "timedout { name }, indexUnavailable, results { __typename, ... on FileMatch "
    "{ repository { name }, file { path, url, content }, "
    "lineMatches { preview, lineNumber, offsetAndLengths } } } } } }"
)


def _render_line_match(line_match, content, context_window):
    line_number = int(line_match.get("lineNumber") or 0)
    preview = line_match.get("preview") or ""

    if not content:
        return f"```\n{line_number}| {preview}\n```\n\n"

    lines = content.split("\n")
    out = "```\n"
    start = max(1, line_number - context_window)
    for index in range(start - 1, min(line_number - 1, len(lines))):
        out += f"{index + 1}| {lines[index]}\n"
    out += f"{line_number}|  {preview}\n"
    for index in range(line_number, min(line_number + context_window, len(lines))):
        out += f"{index + 1}| {lines[index]}\n"
    return out + "```\n\n"


def format_results(result, context_window):
    """Render a GraphQL search response as markdown.

    Raises:
        ValueError: If the response is missing data, search or results
    """
    errors = result.get("errors") or []
    if errors:
        out = "## Sourcegraph API Error\n\n"
        for error in errors:
            if isinstance(error, dict) and error.get("message"):
                out += f"- {error['message']}\n"
        return out

    data = result.get("data")
    if not isinstance(data, dict):
        raise ValueError("invalid response format: missing data field")
    search = data.get("search")
    if not isinstance(search, dict):
        raise ValueError("invalid response format: missing search field")
    results = search.get("results")
    if not isinstance(results, dict):
        raise ValueError("invalid response format: missing results field")

    out = "# Sourcegraph Search Results\n\n"
    out += (
        f"Found {int(results.get('matchCount') or 0)} matches across "
        f"{int(results.get('resultCount') or 0)} results\n"
    )
    if results.get("limitHit"):
        out += "(Result limit reached, try a more specific query)\n"
    out += "\n"

    matches = results.get("results") or []
    if not matches:
        return out + "No results found. Try a different query.\n"

    for index, match in enumerate(matches[:MAX_RENDERED_RESULTS], 1):
        if not isinstance(match, dict) or match.get("__typename") != "FileMatch":
            continue
        repo = match.get("repository")
        file_info = match.get("file")
        if not repo or not file_info:
            continue

        out += f"## Result {index}: {repo.get('name', '')}/{file_info.get('path', '')}\n\n"
        if file_info.get("url"):
            out += f"URL: {file_info['url']}\n\n"
        for line_match in match.get("lineMatches") or []:
            if isinstance(line_match, dict):
                out += _render_line_match(line_match, file_info.get("content") or "", context_window)

    return out


@dataclass
class SourcegraphParams:
    query: str
    count: int = DEFAULT_COUNT
    context_window: int = DEFAULT_CONTEXT_WINDOW
    timeout: int = 0


class SourcegraphTool(BaseTool):
    """Code search across public repositories."""

    params_type = SourcegraphParams

    def info(self):
        return ToolInfo(
            name="sourcegraph",
            description=(
                "Searches code across public repositories using Sourcegraph query syntax, "
                "e.g. 'fmt.Println lang:go', 'repo:^github\\.com/org/repo$ file:\\.py$ term' "
                f"or 'type:symbol Handler'. Returns at most {MAX_RENDERED_RESULTS} results "
                "with surrounding lines."
            ),
            parameters={
                "query": {"type": "string", "description": "The Sourcegraph search query"},
                "count": {
                    "type": "number",
                    "description": f"Optional number of results (default {DEFAULT_COUNT}, max {MAX_COUNT})",
                },
                "context_window": {
                    "type": "number",
                    "description": f"Lines of context around each match (default {DEFAULT_CONTEXT_WINDOW})",
                },
                "timeout": {
                    "type": "number",
                    "description": f"Optional timeout in seconds (max {MAX_FETCH_TIMEOUT})",
                },
            },
            required=["query"],
        )

    def execute(self, ctx, params):
        if not params.query:
            raise ParamError("Query parameter is required")

        count = DEFAULT_COUNT if params.count <= 0 else min(params.count, MAX_COUNT)
        context_window = params.context_window if params.context_window > 0 else DEFAULT_CONTEXT_WINDOW
        timeout = clamp_seconds(params.timeout, DEFAULT_FETCH_TIMEOUT, MAX_FETCH_TIMEOUT)

        payload = json.dumps({
            "query": SEARCH_QUERY,
            "variables": {"query": f"{params.query} count:{count}"},
        }).encode("utf-8")

        result = run_cancellable(
            ctx, http_request, SOURCEGRAPH_URL,
            data=payload,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
        if result.status != 200:
            if result.body:
                return ToolResponse.error(
                    f"Request failed with status code: {result.status}, response: {result.body}"
                )
            return ToolResponse.error(f"Request failed with status code: {result.status}")

        try:
            decoded = json.loads(result.body)
        except json.JSONDecodeError as error:
            raise ExternalFailure(f"failed to unmarshal response: {error}") from error

        try:
            return ToolResponse.text(format_results(decoded, context_window))
        except ValueError as error:
            return ToolResponse.error(f"Failed to format results: {error}")
