"""
Autocomplete suggestion client.

Fetches real user queries from the search-suggestion endpoint. The endpoint
answers with a JSON-like array ["query",["s1","s2",...]] that is not always
valid JSON, so quoted tokens are scanned instead of decoded.
"""

import logging
import re
from typing import Optional

import httpx

from .config import SuggestConfig

logger = logging.getLogger(__name__)

_STRING_PATTERN = re.compile(r'"((?:[^"\\]|\\.)*)"')
_ESCAPE_PATTERN = re.compile(r"\\(u[0-9a-fA-F]{4}|.)")


def _unescape(token: str) -> str:
    def replace(match: re.Match) -> str:
        escaped = match.group(1)
        if escaped.startswith("u") and len(escaped) == 5:
            return chr(int(escaped[1:], 16))
        return {"n": "\n", "t": "\t", "r": "\r"}.get(escaped, escaped)

    return _ESCAPE_PATTERN.sub(replace, token)


def _closing_bracket(body: str, start: int) -> int:
    """Index of the ']' matching the '[' at start, or -1 if the array is cut off."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(body)):
        char = body[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return i
    return -1


def parse_suggestions(body: Optional[str]) -> list[str]:
    """
    Extract suggestion strings from a raw response body.

    The first quoted token is the echoed query and is always discarded.
    Tokens after the suggestion array (metadata the endpoint sometimes
    appends) are ignored. When the array cannot be delimited, every token
    after the first is taken.
    """
    if not body:
        return []

    tokens = list(_STRING_PATTERN.finditer(body))
    if len(tokens) < 2:
        return []

    array_start = body.find("[", tokens[0].end())
    array_end = _closing_bracket(body, array_start) if array_start != -1 else -1

    suggestions = []
    for match in tokens[1:]:
        if array_start != -1 and match.start() < array_start:
            continue
        if array_end != -1 and match.start() > array_end:
            break
        text = _unescape(match.group(1)).strip()
        if text:
            suggestions.append(text)
    return suggestions


class SuggestionClient:
    """
    Fetch autocomplete suggestions for a query.

    Failures never propagate: network errors, timeouts, non-2xx answers and
    unreadable bodies all yield an empty list.

    Usage:
        client = SuggestionClient()
        suggestions = await client.fetch_suggestions("cold brew")
    """

    def __init__(
        self,
        config: Optional[SuggestConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or SuggestConfig()
        self._http_client = http_client

    async def fetch_suggestions(self, query: str) -> list[str]:
        if not query or not query.strip():
            return []

        params = {"client": self.config.client, "q": query}
        try:
            logger.debug(f"Fetching suggestions for: {query}")
            if self._http_client is not None:
                response = await self._http_client.get(self.config.url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.get(self.config.url, params=params)
            response.raise_for_status()
            suggestions = parse_suggestions(response.text)
        except Exception as e:
            logger.warning(f"Failed to fetch suggestions for '{query}': {e}")
            return []

        logger.info(f"Found {len(suggestions)} suggestions for keyword: {query}")
        return suggestions
