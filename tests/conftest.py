import json
from typing import Dict, List, Optional

import httpx
import pytest

from i18n_codegen.models import TranslationEntry


@pytest.fixture
def locales() -> List[str]:
    """The closed locale set used throughout the tests, in configured order."""
    return ["en", "da"]


@pytest.fixture
def make_entry():
    """Factory for TranslationEntry objects from a plain {locale: value} dict."""
    def _make(key: str, values: Dict[str, Optional[str]], **kwargs) -> TranslationEntry:
        return TranslationEntry(key=key, values=values, **kwargs)
    return _make


def _lokalise_key(key_id: int, name, translations: Dict[str, object], is_plural: bool = False,
                  description: Optional[str] = None) -> Dict[str, object]:
    """Build a raw key record shaped like the Lokalise API v2 response."""
    return {
        "key_id": key_id,
        "key_name": name,
        "is_plural": is_plural,
        "description": description,
        "translations": [
            {
                "language_iso": language,
                "translation": json.dumps(value) if isinstance(value, dict) else value,
            }
            for language, value in translations.items()
        ],
    }


@pytest.fixture
def lokalise_key():
    return _lokalise_key


@pytest.fixture
def lokalise_transport():
    """
    Factory for an httpx.MockTransport serving the keys endpoint of one project.

    `pages` is a list of key-record lists; page N of the response is pages[N-1].
    Every request is recorded in the returned `requests` list.
    """
    def _make(pages: List[List[Dict[str, object]]], project_id: str = "p1",
              page_count_header: bool = True, projects: Optional[List[Dict[str, str]]] = None):
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path == "/api2/projects":
                page = int(request.url.params.get("page", "1"))
                return httpx.Response(200, json={"projects": (projects or []) if page == 1 else []})
            if request.url.path != f"/api2/projects/{project_id}/keys":
                return httpx.Response(404, json={"error": {"code": 404, "message": "Not found"}})
            page = int(request.url.params.get("page", "1"))
            body = pages[page - 1] if page <= len(pages) else []
            headers = {"X-Pagination-Page-Count": str(len(pages))} if page_count_header else {}
            return httpx.Response(200, json={"project_id": project_id, "keys": body}, headers=headers)

        return httpx.MockTransport(handler), requests
    return _make
