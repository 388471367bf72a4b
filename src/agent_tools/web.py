"""Web search for prompt augmentation.

Results are rendered into a plain-text block that gets embedded verbatim in
the model prompt. Every failure is reported as a string; nothing raises.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from duckduckgo_search import DDGS

from .http import DEFAULT_RETRIES, TransportError, make_timeout, send_with_retry

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
SERPAPI_URL = "https://serpapi.com/search.json"
SERPAPI_ENGINE = "google"
RESULT_COUNT_HINT = 5
MAX_ITEMS = 3
SEARCH_TIMEOUT = 15.0
PROVIDERS = ("serpapi", "duckduckgo")

# Preference order for SerpAPI result collections
RESULT_FIELDS = ("organic_results", "news_results", "answer_box", "knowledge_graph")


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _first(item: Dict[str, Any], keys: tuple[str, ...], default: str) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, dict):
            # knowledge_graph "source" is {"name": ..., "link": ...}
            value = value.get("link") or value.get("name")
        if value:
            return str(value)
    return default


def normalize_item(item: Dict[str, Any]) -> Dict[str, str]:
    """Map a provider hit to ``{title, snippet, link}`` using per-field fallbacks."""
    return {
        "title": _first(item, ("title", "name"), "No title"),
        "snippet": _first(item, ("snippet", "content", "description", "answer", "body"), "No snippet available."),
        "link": _first(item, ("link", "url", "href", "source"), ""),
    }


def pick_results(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return the first present, non-empty result collection as a list of dicts."""
    for field_name in RESULT_FIELDS:
        results = data.get(field_name)
        if not results:
            continue
        if isinstance(results, dict):
            return [results]
        if isinstance(results, list):
            return [r for r in results if isinstance(r, dict)]
    return []


def format_results(query: str, items: List[Dict[str, str]]) -> str:
    blocks = [
        f"({i}) **{item['title']}**\n{item['snippet']}\n{item['link']}"
        for i, item in enumerate(items, 1)
    ]
    return f'Top web results for "{query}":\n\n' + "\n\n".join(blocks)


def no_results_message(query: str) -> str:
    return f'No web results found for: "{query}".'


def failure_message(query: str) -> str:
    return f'Error: Failed to fetch web results for "{query}".'


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------
class SearchClient:
    """Search provider client returning a formatted text block.

    Parameters
    ----------
    api_key : str | None
        SerpAPI key. Without it the serpapi provider degrades to an
        explanatory string and makes no network call.
    provider : str
        ``"serpapi"`` (default) or ``"duckduckgo"`` (no key required).
    transport : httpx.BaseTransport | None
        Optional transport override, used by tests.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        provider: str = "serpapi",
        url: str = SERPAPI_URL,
        engine: str = SERPAPI_ENGINE,
        num: int = RESULT_COUNT_HINT,
        max_items: int = MAX_ITEMS,
        timeout: float = SEARCH_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        provider = (provider or "serpapi").lower()
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown search provider {provider!r}; expected one of {PROVIDERS}")
        self.api_key = api_key or None
        self.provider = provider
        self.url = url
        self.engine = engine
        self.num = int(num)
        self.max_items = int(max_items)
        self.timeout = make_timeout(timeout)
        self.retries = int(retries)
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.provider == "duckduckgo" or bool(self.api_key)

    def search(self, query: str) -> str:
        if self.provider == "duckduckgo":
            return self._search_duckduckgo(query)
        return self._search_serpapi(query)

    __call__ = search

    # --------- providers ----------
    def _search_serpapi(self, query: str) -> str:
        if not self.api_key:
            return f'Error: SERPAPI_KEY is not set on the server. Cannot run web search for "{query}".'

        params = {
            "engine": self.engine,
            "q": query,
            "api_key": self.api_key,
            "num": self.num,
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                r = send_with_retry(client, "GET", self.url, params=params, retries=self.retries)
                if not r.is_success:
                    logger.warning("SerpAPI returned status %d for %r", r.status_code, query)
                    return f"Error: SerpAPI request failed with status {r.status_code}."
                data = r.json()
        except (TransportError, ValueError) as e:
            logger.exception("SerpAPI error for %r: %s", query, e)
            return failure_message(query)

        if not isinstance(data, dict):
            return no_results_message(query)
        results = pick_results(data)
        if not results:
            return no_results_message(query)
        items = [normalize_item(r) for r in results[: self.max_items]]
        return format_results(query, items)

    def _search_duckduckgo(self, query: str) -> str:
        try:
            with DDGS() as ddgs:
                hits = ddgs.text(query, max_results=self.num, safesearch="moderate") or []
        except Exception as e:
            logger.exception("DuckDuckGo search error for %r: %s", query, e)
            return failure_message(query)

        items = [normalize_item(h) for h in hits if isinstance(h, dict)][: self.max_items]
        if not items:
            return no_results_message(query)
        return format_results(query, items)
