# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Fetch tool: download a URL and return it as text, markdown or HTML."""

import logging
import urllib.error
import urllib.request
from dataclasses import dataclass

from bs4 import BeautifulSoup
from markdownify import markdownify

from ..context import run_cancellable
from ..errors import ExternalFailure, ParamError
from .base import BaseTool, ToolInfo, ToolResponse
from .constants import DEFAULT_FETCH_TIMEOUT, MAX_FETCH_SIZE, MAX_FETCH_TIMEOUT
from .validation import ask_permission

logger = logging.getLogger(__name__)

USER_AGENT = "coderig/1.0"
FETCH_FORMATS = ("text", "markdown", "html")

# Elements whose text is never visible on the page
INVISIBLE_TAGS = ["script", "style", "noscript", "iframe", "object", "embed", "template"]


@dataclass
class HTTPResult:
    status: int
    content_type: str
    body: str


def http_request(url, data=None, headers=None, timeout=DEFAULT_FETCH_TIMEOUT, limit=MAX_FETCH_SIZE):
    """GET (or POST when data is given) url; the body is read up to limit bytes.

    HTTP error statuses are returned, not raised.

    Raises:
        ExternalFailure: On connection, DNS or timeout failures
    """
    request_headers = {"User-Agent": USER_AGENT}
    request_headers.update(headers or {})
    request = urllib.request.Request(url, data=data, headers=request_headers)

    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            charset = response.headers.get_content_charset() or "utf-8"
            body = response.read(limit)
            return HTTPResult(
                status=response.status,
                content_type=response.headers.get("Content-Type", ""),
                body=body.decode(charset, errors="replace"),
            )
    except urllib.error.HTTPError as error:
        body = error.read(limit).decode("utf-8", errors="replace") if error.fp else ""
        content_type = error.headers.get("Content-Type", "") if error.headers else ""
        return HTTPResult(status=error.code, content_type=content_type, body=body)
    except urllib.error.URLError as error:
        raise ExternalFailure(f"failed to fetch URL: {error.reason}") from error
    except (OSError, ValueError) as error:
        raise ExternalFailure(f"failed to fetch URL: {error}") from error


def clamp_seconds(timeout, default, maximum):
    if timeout <= 0:
        return default
    return min(timeout, maximum)


def extract_text(html):
    """Visible text of an HTML page, whitespace collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(INVISIBLE_TAGS):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def convert_html_to_markdown(html):
    return markdownify(html, heading_style="ATX").strip()


@dataclass
class FetchParams:
    url: str
    format: str = "text"
    timeout: int = 0


class FetchTool(BaseTool):
    """Fetch a URL."""

    params_type = FetchParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="fetch",
            description=(
                "Fetches content from a URL and returns it as text, markdown or raw html. "
                f"Responses are read up to {MAX_FETCH_SIZE // (1024 * 1024)}MB. "
                f"Timeout is in seconds (default {DEFAULT_FETCH_TIMEOUT}, max {MAX_FETCH_TIMEOUT})."
            ),
            parameters={
                "url": {"type": "string", "description": "The URL to fetch content from"},
                "format": {
                    "type": "string",
                    "enum": list(FETCH_FORMATS),
                    "description": "The format to return the content in (text, markdown, or html)",
                },
                "timeout": {
                    "type": "number",
                    "description": f"Optional timeout in seconds (max {MAX_FETCH_TIMEOUT})",
                },
            },
            required=["url", "format"],
        )

    def execute(self, ctx, params):
        url = params.url.strip()
        if not url:
            raise ParamError("URL parameter is required")
        if not url.startswith(("http://", "https://")):
            raise ParamError("URL must start with http:// or https://")

        fmt = params.format.lower()
        if fmt not in FETCH_FORMATS:
            raise ParamError("Format must be one of: text, markdown, html")

        ask_permission(
            self.services, ctx, "fetch", "fetch", url,
            f"Fetch content from URL: {url}",
            {"url": url, "format": fmt},
        )

        timeout = clamp_seconds(params.timeout, DEFAULT_FETCH_TIMEOUT, MAX_FETCH_TIMEOUT)
        result = run_cancellable(ctx, http_request, url, timeout=timeout)
        if result.status != 200:
            return ToolResponse.error(f"Request failed with status code: {result.status}")

        is_html = "text/html" in result.content_type.lower()
        logger.debug("Fetched %s (%d chars, %s)", url, len(result.body), result.content_type)

        if fmt == "text":
            content = extract_text(result.body) if is_html else result.body
        elif fmt == "markdown":
            content = convert_html_to_markdown(result.body) if is_html else f"```\n{result.body}\n```"
        else:
            content = result.body

        return ToolResponse.text(content)
