import json
import logging
import os
from typing import Any, Dict, List, Optional

import redis
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, Query

from errors import ApiError, SearchUnavailableError
from search_client import PROJECTS_INDEX, MeilisearchApiError, MeilisearchClient, get_search_client

load_dotenv()

logger = logging.getLogger(__name__)

router = APIRouter()

REDIS_URL = os.getenv("REDIS_URL")
SEARCH_CACHE_TTL_SECONDS = int(os.getenv("SEARCH_CACHE_TTL_SECONDS", "60"))

# Optional Redis client
redis_client: Optional[redis.Redis] = None
if REDIS_URL:
    try:
        redis_client = redis.from_url(REDIS_URL, decode_responses=True)
        redis_client.ping()
        logger.info("Connected to Redis successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize Redis: {e}")
        redis_client = None

# Frontend sort names that differ from the indexed attribute.
SORT_ALIASES = {"likes": "likes_count"}


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_filter(voicebank: Optional[str] = None, creator: Optional[str] = None,
                 tags: Optional[str] = None) -> Optional[str]:
    """
    Translate query parameters into a Meilisearch filter expression.

    Every tag in the comma-separated `tags` adds its own clause, so a project
    must carry all of them.
    """
    filters = []
    if voicebank:
        filters.append(f"voicebank_id = {_quote(voicebank)}")
    if creator:
        filters.append(f"creator_id = {_quote(creator)}")
    if tags:
        for tag_id in (t.strip() for t in tags.split(",")):
            if tag_id:
                filters.append(f"tag_ids = {_quote(tag_id)}")
    return " AND ".join(filters) if filters else None


def build_sort(sort: Optional[str]) -> Optional[List[str]]:
    if not sort:
        return None
    rules = []
    for item in sort.split(","):
        field, _, direction = item.strip().rpartition("_")
        if not field or direction not in ("asc", "desc"):
            continue
        rules.append(f"{SORT_ALIASES.get(field, field)}:{direction}")
    return rules or None


class SearchService:
    def __init__(self, client: MeilisearchClient, redis_client: Optional[redis.Redis], cache_ttl: int,
                 index_name: str = PROJECTS_INDEX):
        self.client = client
        self.redis_client = redis_client
        self.cache_ttl = cache_ttl
        self.index_name = index_name

    def _cache_get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.redis_client:
            return None
        try:
            val = self.redis_client.get(key)
            if val:
                return json.loads(val)
        except Exception as e:
            logger.warning(f"Redis get failed: {e}")
        return None

    def _cache_set(self, key: str, value: Dict[str, Any]) -> None:
        if not self.redis_client:
            return
        try:
            self.redis_client.setex(key, self.cache_ttl, json.dumps(value))
        except Exception as e:
            logger.warning(f"Redis set failed: {e}")

    def _search(self, query: str, options: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.client.search(self.index_name, query, options)
        except MeilisearchApiError as e:
            raise ApiError(400, "Invalid search request", e.message)

    def ensure_ready(self) -> None:
        if not self.client.is_available():
            raise SearchUnavailableError("Meilisearch is not available")
        try:
            self.client.get_stats(self.index_name)
        except MeilisearchApiError as e:
            if e.code == "index_not_found":
                raise ApiError(500, "Index not configured",
                               "Call POST /search-setup/meilisearch to initialize the index")
            raise SearchUnavailableError(e.message)

    def search_projects(self, q: Optional[str], limit: int, offset: int, voicebank: Optional[str] = None,
                        creator: Optional[str] = None, sort: Optional[str] = None,
                        tags: Optional[str] = None) -> Dict[str, Any]:
        params = {"q": q, "limit": limit, "offset": offset, "voicebank": voicebank,
                  "creator": creator, "sort": sort, "tags": tags}
        cache_key = f"search:projects:{json.dumps(params, sort_keys=True)}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        self.ensure_ready()

        options: Dict[str, Any] = {
            "limit": limit,
            "offset": offset,
            "attributesToRetrieve": ["*"],
            "attributesToHighlight": ["title", "searchable_content"],
            "highlightPreTag": "<mark>",
            "highlightPostTag": "</mark>",
            "attributesToCrop": ["searchable_content"],
            "cropLength": 100,
        }
        search_filter = build_filter(voicebank, creator, tags)
        if search_filter:
            options["filter"] = search_filter
        sort_rules = build_sort(sort)
        if sort_rules:
            options["sort"] = sort_rules

        results = self._search(q or "", options)
        hits = results.get("hits", [])
        response = {
            "hits": hits,
            "query": q,
            "totalHits": results.get("estimatedTotalHits", results.get("totalHits")),
            "processingTimeMs": results.get("processingTimeMs"),
            "facetDistribution": results.get("facetDistribution"),
            "pagination": {
                "offset": offset,
                "limit": limit,
                "hasNext": limit > 0 and len(hits) == limit,
            },
        }
        self._cache_set(cache_key, response)
        return response

    def suggest_projects(self, q: Optional[str], limit: int) -> Dict[str, Any]:
        if not q:
            return {"suggestions": []}

        cache_key = f"search:suggest:{json.dumps({'q': q, 'limit': limit}, sort_keys=True)}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        results = self._search(q, {
            "limit": limit,
            "attributesToRetrieve": ["id", "title", "creator", "voicebank_name"],
            "attributesToHighlight": ["title"],
            "highlightPreTag": "<mark>",
            "highlightPostTag": "</mark>",
        })
        response = {
            "suggestions": [
                {
                    "id": hit.get("id"),
                    "title": hit.get("title"),
                    "creator": hit.get("creator"),
                    "voicebank": hit.get("voicebank_name"),
                    "highlighted": (hit.get("_formatted") or {}).get("title") or hit.get("title"),
                }
                for hit in results.get("hits", [])
            ]
        }
        self._cache_set(cache_key, response)
        return response


def get_search_service(client: MeilisearchClient = Depends(get_search_client)) -> SearchService:
    return SearchService(
        client=client,
        redis_client=redis_client,
        cache_ttl=SEARCH_CACHE_TTL_SECONDS,
    )


@router.get("/projects", summary="Full-text search over published projects")
def search_projects(
    q: Optional[str] = Query(None, description="Search terms"),
    limit: int = Query(20, ge=0),
    offset: int = Query(0, ge=0),
    voicebank: Optional[str] = Query(None, description="Voicebank id"),
    creator: Optional[str] = Query(None, description="Creator user id"),
    sort: Optional[str] = Query(None, description="Comma-separated, e.g. likes_desc,plays_asc"),
    tags: Optional[str] = Query(None, description="Comma-separated tag ids, all required"),
    service: SearchService = Depends(get_search_service),
):
    return service.search_projects(q, limit, offset, voicebank, creator, sort, tags)


@router.get("/projects/suggest", summary="Autocomplete suggestions")
def suggest_projects(
    q: Optional[str] = Query(None),
    limit: int = Query(5, ge=0),
    service: SearchService = Depends(get_search_service),
):
    return service.suggest_projects(q, limit)
