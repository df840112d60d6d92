# ==============================================================================
# MEILISEARCH API CLIENT
# ==============================================================================
# A thin wrapper over the Meilisearch HTTP API. Only the calls the platform
# needs are implemented: health, index management, settings, document
# writes and search. Network failures and server errors are raised as
# `SearchUnavailableError`; client errors (4xx) as `MeilisearchApiError`.
# ------------------------------------------------------------------------------

# --- Imports ---
import logging
import os
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

import requests
from dotenv import load_dotenv

from errors import SearchUnavailableError

# --- Initial Setup ---
load_dotenv()
MEILISEARCH_HOST = os.getenv("MEILISEARCH_HOST", "http://localhost:7700")
MEILISEARCH_API_KEY = os.getenv("MEILISEARCH_API_KEY")
MEILISEARCH_INDEX_PREFIX = os.getenv("MEILISEARCH_INDEX_PREFIX", "directus_")
MEILISEARCH_TIMEOUT_SECONDS = float(os.getenv("MEILISEARCH_TIMEOUT_SECONDS", "10"))

PROJECTS_INDEX = f"{MEILISEARCH_INDEX_PREFIX}projects"

logger = logging.getLogger(__name__)


class MeilisearchApiError(Exception):
    """A 4xx answer from Meilisearch, carrying its error `code` (e.g. `index_not_found`)."""

    def __init__(self, status_code: int, code: Optional[str], message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class MeilisearchClient:
    def __init__(self, host: str, api_key: Optional[str] = None, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.host = host.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.host}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise SearchUnavailableError(f"Meilisearch unreachable at {self.host}: {e}") from e

        if response.status_code >= 500:
            raise SearchUnavailableError(
                f"Meilisearch error {response.status_code} on {method} {path}: {response.text}"
            )
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise MeilisearchApiError(
                response.status_code, body.get("code"), body.get("message") or response.text
            )
        if not response.content:
            return {}
        return response.json()

    # --- Instance ---
    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def is_available(self) -> bool:
        return self.health().get("status") == "available"

    # --- Indexes ---
    def create_index(self, uid: str, primary_key: str = "id") -> Dict[str, Any]:
        return self._request("POST", "/indexes", json={"uid": uid, "primaryKey": primary_key})

    def get_stats(self, uid: str) -> Dict[str, Any]:
        return self._request("GET", f"/indexes/{uid}/stats")

    def get_settings(self, uid: str) -> Dict[str, Any]:
        return self._request("GET", f"/indexes/{uid}/settings")

    def update_settings(self, uid: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"/indexes/{uid}/settings", json=settings)

    # --- Documents ---
    def add_documents(self, uid: str, documents: List[Dict[str, Any]], primary_key: str = "id") -> Dict[str, Any]:
        return self._request("POST", f"/indexes/{uid}/documents", params={"primaryKey": primary_key},
                             json=documents)

    def delete_documents(self, uid: str, document_ids: Iterable[str]) -> Dict[str, Any]:
        return self._request("POST", f"/indexes/{uid}/documents/delete-batch", json=list(document_ids))

    # --- Search ---
    def search(self, uid: str, query: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {"q": query}
        payload.update(options or {})
        return self._request("POST", f"/indexes/{uid}/search", json=payload)


@lru_cache(maxsize=1)
def get_search_client() -> MeilisearchClient:
    if not MEILISEARCH_API_KEY:
        logger.warning("MEILISEARCH_API_KEY is not set; calling Meilisearch without authentication.")
    return MeilisearchClient(MEILISEARCH_HOST, MEILISEARCH_API_KEY, timeout=MEILISEARCH_TIMEOUT_SECONDS)
