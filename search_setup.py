import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from deps import Accountability, get_accountability
from errors import ApiError, SearchUnavailableError
from search_client import MEILISEARCH_HOST, PROJECTS_INDEX, MeilisearchApiError, MeilisearchClient, get_search_client
from search_sync import load_published_documents

logger = logging.getLogger(__name__)

router = APIRouter()

SEARCHABLE_ATTRIBUTES = ["title", "searchable_content", "description", "creator", "voicebank_name"]
FILTERABLE_ATTRIBUTES = ["voicebank_id", "creator_id", "status", "tempo", "key_signature", "tag_ids"]
SORTABLE_ATTRIBUTES = ["likes_count", "plays", "downloads", "tempo", "duration"]


def configure_index(client: MeilisearchClient, db: Session, index_name: str = PROJECTS_INDEX) -> Dict[str, Any]:
    """Create the projects index if needed, apply its settings and load every published project."""
    try:
        client.create_index(index_name, primary_key="id")
    except MeilisearchApiError as e:
        # An existing index is fine.
        logger.info(f"Index {index_name} not created ({e.code}): {e.message}")

    configuration = {
        "searchableAttributes": SEARCHABLE_ATTRIBUTES,
        "filterableAttributes": FILTERABLE_ATTRIBUTES,
        "sortableAttributes": SORTABLE_ATTRIBUTES,
    }
    client.update_settings(index_name, configuration)

    documents = load_published_documents(db)
    task_id = None
    if documents:
        task = client.add_documents(index_name, documents, primary_key="id")
        task_id = task.get("taskUid")

    stats = client.get_stats(index_name)
    logger.info(f"Index {index_name} configured with {len(documents)} published projects")
    return {
        "success": True,
        "message": "Meilisearch index configured",
        "indexName": index_name,
        "documentsCount": len(documents),
        "taskId": task_id,
        "configuration": configuration,
        "stats": stats,
    }


@router.post("/meilisearch", summary="Configure and populate the search index (admin only)")
def setup_meilisearch(
    accountability: Accountability = Depends(get_accountability),
    db: Session = Depends(get_db),
    client: MeilisearchClient = Depends(get_search_client),
):
    if not accountability.admin:
        raise ApiError(403, "Access restricted to administrators")
    try:
        return configure_index(client, db)
    except MeilisearchApiError as e:
        logger.error(f"Meilisearch configuration rejected: {e.message}")
        raise SearchUnavailableError(f"Configuration error: {e.message}")


@router.get("/meilisearch/status", summary="Search engine and index status")
def meilisearch_status(client: MeilisearchClient = Depends(get_search_client)):
    health = client.health()
    try:
        stats = client.get_stats(PROJECTS_INDEX)
        index_info = {
            "name": PROJECTS_INDEX,
            "documentsCount": stats.get("numberOfDocuments"),
            "isIndexing": stats.get("isIndexing"),
            "settings": client.get_settings(PROJECTS_INDEX),
        }
    except MeilisearchApiError as e:
        if e.code != "index_not_found":
            raise SearchUnavailableError(f"Status error: {e.message}")
        index_info = {
            "name": PROJECTS_INDEX,
            "exists": False,
            "message": "Index not configured. Call POST /search-setup/meilisearch",
        }
    return {
        "meilisearch": {"status": health.get("status"), "host": MEILISEARCH_HOST},
        "index": index_info,
    }
