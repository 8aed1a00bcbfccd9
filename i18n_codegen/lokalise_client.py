"""
Lokalise REST API (v2) client and translation fetcher.

Only three things are normalised on the way in, and nothing else:
1. The key name is taken from the configured platform slot of `key_name`
   (Lokalise may return a plain string or an {ios, android, web, other} object).
   It is passed through verbatim, without case folding or trimming.
2. Translations for languages outside the configured locale set are dropped.
3. Plural keys store a JSON object of plural forms per translation; these are
   rewritten into `{count, plural, one {...} other {...}}` so the placeholder
   parser sees one syntax for every key.
"""
import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import jsonschema
from aiolimiter import AsyncLimiter
from tqdm.asyncio import tqdm

from i18n_codegen.errors import AuthError, MalformedResponseError, NetworkError
from i18n_codegen.models import LocaleCode, PLURAL_CATEGORIES, TranslationEntry

logger = logging.getLogger(__name__)

LOKALISE_API_BASE_URL = "https://api.lokalise.com/api2/"
# Lokalise rejects larger pages.
MAX_PAGE_SIZE = 5000
KEY_PLATFORMS = ("ios", "android", "web", "other")
PAGE_COUNT_HEADER = "X-Pagination-Page-Count"

PROJECTS_SCHEMA = {
    "type": "object",
    "required": ["projects"],
    "properties": {
        "projects": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["project_id", "name"],
                "properties": {
                    "project_id": {"type": "string"},
                    "name": {"type": "string"},
                },
            },
        },
    },
}

KEYS_SCHEMA = {
    "type": "object",
    "required": ["keys"],
    "properties": {
        "keys": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key_id", "key_name", "translations"],
                "properties": {
                    "key_id": {"type": "integer"},
                    "key_name": {
                        "oneOf": [
                            {"type": "string"},
                            {
                                "type": "object",
                                "properties": {p: {"type": "string"} for p in KEY_PLATFORMS},
                            },
                        ]
                    },
                    "is_plural": {"type": "boolean"},
                    "description": {"type": ["string", "null"]},
                    "translations": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["language_iso", "translation"],
                            "properties": {
                                "language_iso": {"type": "string"},
                                "translation": {"type": ["string", "object"]},
                            },
                        },
                    },
                },
            },
        },
    },
}


@dataclass(frozen=True)
class FetchSettings:
    """Transport and normalisation settings for the fetcher."""
    base_url: str = LOKALISE_API_BASE_URL
    page_size: int = 500
    max_concurrent_requests: int = 4
    # Lokalise allows 6 requests per second per token.
    requests_per_second: float = 6
    timeout: float = 30.0
    max_retries: int = 1
    retry_base_delay: float = 1.0
    key_platform: str = "other"
    plural_variable: str = "count"
    show_progress: bool = True


@dataclass(frozen=True)
class Project:
    project_id: str
    name: str


async def _handle_retry(attempt: int, max_attempts: int, base_delay: float, what: str,
                        retry_after_header: Optional[str] = None) -> bool:
    """
    Handle the retry mechanism with exponential backoff and jitter.

    Args:
        attempt (int): The current attempt number, starting at 1.
        max_attempts (int): The total number of attempts allowed.
        base_delay (float): The base delay in seconds.
        what (str): Description of the request, for logging.
        retry_after_header (Optional[str]): The Retry-After header, if the server sent one.

    Returns:
        bool: True if the request should be retried, False otherwise.
    """
    if attempt >= max_attempts:
        logger.error("Request for %s failed after %d attempt(s).", what, max_attempts)
        return False

    delay = None
    if retry_after_header:
        try:
            delay = float(retry_after_header)
        except ValueError:
            logger.warning("Could not parse Retry-After header '%s'. Falling back to exponential backoff.",
                           retry_after_header)
    if delay is None:
        delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, 1)
    logger.info("Retrying request for %s in %.2f seconds (Attempt %d/%d)", what, delay, attempt + 1, max_attempts)
    await asyncio.sleep(delay)
    return True


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the message from a Lokalise error envelope."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return str(payload["error"].get("message", ""))
    return str(payload)[:200]


def _page_count(headers: httpx.Headers) -> Optional[int]:
    raw = headers.get(PAGE_COUNT_HEADER)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s header: '%s'", PAGE_COUNT_HEADER, raw)
        return None


class LokaliseClient:
    """Async client for the parts of the Lokalise API the generator needs."""

    def __init__(self, api_token: Optional[str], settings: Optional[FetchSettings] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not api_token or not api_token.strip():
            raise AuthError("Lokalise API token is missing. Set LOKALISE_API_TOKEN.")
        self.api_token = api_token
        self.settings = settings or FetchSettings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "LokaliseClient":
        self._client = httpx.AsyncClient(
            base_url=self.settings.base_url,
            headers={"X-Api-Token": self.api_token, "Accept": "application/json"},
            timeout=self.settings.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, schema: Dict[str, Any],
                   params: Optional[Dict[str, Any]] = None) -> Tuple[Dict[str, Any], httpx.Headers]:
        """
        GET a Lokalise endpoint and validate the JSON body against a schema.

        Returns:
            The decoded body and the response headers.

        Raises:
            NetworkError: On transport failures, timeouts and unexpected statuses.
            AuthError: On 401 and 403 responses.
            MalformedResponseError: When the body is not JSON or does not match the schema.
        """
        if self._client is None:
            raise RuntimeError("LokaliseClient not initialized. Use as async context manager.")

        max_attempts = self.settings.max_retries + 1
        what = f"{path} {params or ''}".strip()
        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._client.get(path, params=params)
            except httpx.TransportError as exc:
                logger.warning("Transport error for %s: %s", what, exc)
                if await _handle_retry(attempt, max_attempts, self.settings.retry_base_delay, what):
                    continue
                raise NetworkError(f"Request for {what} failed: {exc}") from exc

            status = response.status_code
            if status in (401, 403):
                raise AuthError(f"Lokalise rejected the API token: {_error_message(response)}", status)
            if status == 429 or status >= 500:
                logger.warning("Lokalise answered %d for %s", status, what)
                if await _handle_retry(attempt, max_attempts, self.settings.retry_base_delay, what,
                                       response.headers.get("Retry-After")):
                    continue
                raise NetworkError(f"Lokalise answered HTTP {status} for {what}: {_error_message(response)}", status)
            if response.is_error:
                raise NetworkError(f"Lokalise answered HTTP {status} for {what}: {_error_message(response)}", status)

            try:
                payload = response.json()
            except ValueError as exc:
                raise MalformedResponseError(f"Response for {what} is not valid JSON: {exc}", status) from exc
            try:
                jsonschema.validate(instance=payload, schema=schema)
            except jsonschema.ValidationError as exc:
                logger.debug("Unexpected payload for %s:\n%s", what, json.dumps(payload, indent=2)[:2000])
                raise MalformedResponseError(
                    f"Response for {what} did not match the expected shape: {exc.message}", status) from exc
            return payload, response.headers

        # The loop either returns or raises.
        raise NetworkError(f"Request for {what} failed")

    async def _fetch_page(self, path: str, collection: str, schema: Dict[str, Any], params: Dict[str, Any],
                          page: int, semaphore: asyncio.Semaphore,
                          rate_limiter: AsyncLimiter) -> Tuple[int, List[Dict[str, Any]]]:
        async with semaphore, rate_limiter:
            payload, _ = await self._get(path, schema, {**params, "page": page})
        return page, payload[collection]

    async def _collect_pages(self, path: str, collection: str, schema: Dict[str, Any],
                             params: Optional[Dict[str, Any]] = None,
                             description: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Fetch every page of a paginated collection and merge them in page order.

        Page 1 tells us the page count; the remaining pages are fetched
        concurrently. Without a page count header, pages are read one by one
        until a short page is returned.
        """
        limit = max(1, min(self.settings.page_size, MAX_PAGE_SIZE))
        params = {**(params or {}), "limit": limit}

        first_page, headers = await self._get(path, schema, {**params, "page": 1})
        pages: Dict[int, List[Dict[str, Any]]] = {1: first_page[collection]}
        page_count = _page_count(headers)

        if page_count is None:
            page = 1
            while len(pages[page]) >= limit:
                page += 1
                payload, _ = await self._get(path, schema, {**params, "page": page})
                pages[page] = payload[collection]
        elif page_count > 1:
            semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_requests))
            rate_limiter = AsyncLimiter(max_rate=self.settings.requests_per_second, time_period=1)
            tasks = [
                asyncio.ensure_future(
                    self._fetch_page(path, collection, schema, params, page, semaphore, rate_limiter))
                for page in range(2, page_count + 1)
            ]
            try:
                for coro in tqdm.as_completed(tasks, total=len(tasks), desc=description or path, unit="page",
                                              disable=not self.settings.show_progress):
                    page, items = await coro
                    pages[page] = items
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()

        merged: List[Dict[str, Any]] = []
        for page in sorted(pages):
            merged.extend(pages[page])
        logger.debug("Fetched %d %s from %d page(s) of %s", len(merged), collection, len(pages), path)
        return merged

    async def projects(self) -> List[Project]:
        raw = await self._collect_pages("projects", "projects", PROJECTS_SCHEMA)
        return [Project(project_id=item["project_id"], name=item["name"]) for item in raw]

    async def find_project(self, name: str) -> Project:
        for project in await self.projects():
            if project.name == name:
                return project
        raise MalformedResponseError(f"Couldn't find a Lokalise project named '{name}'")

    async def keys(self, project_id: str) -> List[Dict[str, Any]]:
        """Raw key records of a project, translations included, in page order."""
        return await self._collect_pages(
            f"projects/{project_id}/keys",
            "keys",
            KEYS_SCHEMA,
            params={"include_translations": 1},
            description="Fetching Lokalise keys",
        )


def select_key_name(key_name: Any, platform: str) -> str:
    if isinstance(key_name, str):
        return key_name
    name = key_name.get(platform)
    if not isinstance(name, str):
        raise MalformedResponseError(f"Key name {key_name!r} has no '{platform}' variant")
    return name


def plural_forms_to_message(forms: Dict[str, str], variable: str) -> str:
    """{"one": "# file", "other": "# files"} -> "{count, plural, one {# file} other {# files}}"."""
    unknown = sorted(set(forms) - set(PLURAL_CATEGORIES))
    if unknown:
        raise MalformedResponseError(f"Unknown plural form(s) {unknown}")
    branches = [f"{category} {{{forms[category]}}}" for category in PLURAL_CATEGORIES if forms.get(category)]
    if not branches:
        return ""
    return f"{{{variable}, plural, {' '.join(branches)}}}"


def _plural_translation(raw: Any, key: str, variable: str) -> str:
    if isinstance(raw, dict):
        forms = raw
    elif raw == "":
        return ""
    else:
        try:
            forms = json.loads(raw)
        except ValueError as exc:
            raise MalformedResponseError(f"Plural key '{key}' has a translation that is not a JSON object") from exc
    if not isinstance(forms, dict) or not all(isinstance(v, str) for v in forms.values()):
        raise MalformedResponseError(f"Plural key '{key}' has malformed plural forms: {raw!r}")
    return plural_forms_to_message(forms, variable)


def normalize_keys(raw_keys: Sequence[Dict[str, Any]], locales: Sequence[LocaleCode],
                   settings: Optional[FetchSettings] = None) -> List[TranslationEntry]:
    """
    Convert raw Lokalise key records into TranslationEntry objects.

    Every entry gets a slot for every locale in `locales`; a locale Lokalise
    returned no translation for stays None.

    Raises:
        MalformedResponseError: On duplicate key names or malformed plural forms.
    """
    settings = settings or FetchSettings()
    locale_set = set(locales)
    entries: List[TranslationEntry] = []
    seen = set()
    for raw in raw_keys:
        key = select_key_name(raw["key_name"], settings.key_platform)
        if key in seen:
            raise MalformedResponseError(f"Key '{key}' appears more than once in the Lokalise response")
        seen.add(key)

        values: Dict[LocaleCode, Optional[str]] = {locale: None for locale in locales}
        is_plural = bool(raw.get("is_plural", False))
        for translation in raw["translations"]:
            language = translation["language_iso"]
            if language not in locale_set:
                logger.debug("Skipping '%s' translation of '%s': locale not configured", language, key)
                continue
            text = translation["translation"]
            if is_plural:
                text = _plural_translation(text, key, settings.plural_variable)
            elif not isinstance(text, str):
                raise MalformedResponseError(f"Key '{key}' has a non-string '{language}' translation")
            values[language] = text

        entries.append(TranslationEntry(
            key=key,
            values=values,
            is_plural=is_plural,
            key_id=raw.get("key_id"),
            description=raw.get("description") or None,
        ))
    return entries


async def fetch_all_translations(credential: Optional[str], project_id: str, *,
                                 locales: Sequence[LocaleCode],
                                 settings: Optional[FetchSettings] = None,
                                 transport: Optional[httpx.AsyncBaseTransport] = None) -> List[TranslationEntry]:
    """
    Fetch every key of a Lokalise project as TranslationEntry objects.

    Args:
        credential: The Lokalise API token.
        project_id: The Lokalise project id.
        locales: The closed locale set; other languages are dropped.
        settings: Transport and normalisation settings.
        transport: Optional httpx transport, used to fake the service in tests.

    Returns:
        List[TranslationEntry]: One entry per key, in the order Lokalise pages them.

    Raises:
        FetchError: NetworkError, AuthError or MalformedResponseError.
    """
    settings = settings or FetchSettings()
    async with LokaliseClient(credential, settings, transport=transport) as client:
        raw_keys = await client.keys(project_id)
    entries = normalize_keys(raw_keys, locales, settings)
    logger.info("Fetched %d key(s) from Lokalise project %s.", len(entries), project_id)
    return entries
