# ==============================================================================
# SEARCH INDEX SYNCHRONIZATION
# ==============================================================================
# This module replicates published projects into the Meilisearch index. It is
# wired as SQLAlchemy session hooks: every flush records which projects were
# created, updated or deleted (tag junction rows count as updates of their
# project), and once the transaction commits the matching search documents
# are pushed or removed on a background worker. The committing request never
# waits on the search engine; failures are retried a few times and then logged.
# ------------------------------------------------------------------------------

# --- Imports ---
import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, joinedload, selectinload, sessionmaker

from errors import SearchUnavailableError
from models import PROJECT_STATUS_PUBLISHED, Project, ProjectTag
from search_client import PROJECTS_INDEX, MeilisearchApiError, MeilisearchClient

logger = logging.getLogger(__name__)

_PENDING_KEY = "search_sync_pending"


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


def build_search_document(project: Optional[Project]) -> Optional[Dict[str, Any]]:
    """
    Flatten a project into the document stored in the search index.

    Returns None for projects that must not be searchable (anything that is
    not published).
    """
    if project is None or project.status != PROJECT_STATUS_PUBLISHED:
        return None

    title = project.title or ""
    description = project.description or ""
    creator = project.creator
    voicebank = project.voicebank

    return {
        "id": project.id,
        "title": title,
        "searchable_content": f"{title} {description}",
        "description": description,
        "tempo": _as_int(project.tempo, 120),
        "key_signature": project.key_signature or "C",
        "duration": _as_int(project.duration, 0),
        "creator": creator.full_name if creator else "",
        "creator_id": creator.id if creator else None,
        "voicebank_name": (voicebank.name or "") if voicebank else "",
        "voicebank_id": voicebank.id if voicebank else None,
        "tag_ids": [str(tag_id) for tag_id in sorted(int(link.tag_id) for link in project.tags)],
        "plays": _as_int(project.plays, 0),
        "likes_count": _as_int(project.likes_count, 0),
        "downloads": _as_int(project.downloads, 0),
        "status": project.status,
        "collection": "projects",
        "cover_image": project.cover_image or None,
    }


def _project_query(db: Session):
    return db.query(Project).options(
        joinedload(Project.creator),
        joinedload(Project.voicebank),
        selectinload(Project.tags),
    )


def load_published_documents(db: Session) -> List[Dict[str, Any]]:
    projects = _project_query(db).filter(Project.status == PROJECT_STATUS_PUBLISHED).all()
    documents = []
    for project in projects:
        document = build_search_document(project)
        if document:
            documents.append(document)
    return documents


class SearchIndexSync:
    """Session hooks keeping the projects index in step with the database."""

    def __init__(self, client: MeilisearchClient, session_factory: sessionmaker,
                 index_name: str = PROJECTS_INDEX, attempts: int = 3, backoff_seconds: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep, executor: Optional[Executor] = None):
        self.client = client
        self.session_factory = session_factory
        self.index_name = index_name
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep
        # One worker keeps index writes in commit order.
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="search-sync")

    # --- Hook registration ---
    def install(self) -> None:
        event.listen(self.session_factory, "after_flush", self._after_flush)
        event.listen(self.session_factory, "after_commit", self._after_commit)
        event.listen(self.session_factory, "after_rollback", self._after_rollback)
        logger.info(f"Search sync hooks installed for index {self.index_name}")

    def uninstall(self) -> None:
        event.remove(self.session_factory, "after_flush", self._after_flush)
        event.remove(self.session_factory, "after_commit", self._after_commit)
        event.remove(self.session_factory, "after_rollback", self._after_rollback)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker, by default after the queued index writes are done."""
        self.executor.shutdown(wait=wait)

    def _after_flush(self, session: Session, flush_context) -> None:
        pending = session.info.setdefault(
            _PENDING_KEY, {"created": set(), "updated": set(), "deleted": set()}
        )
        for obj in session.new:
            if isinstance(obj, Project):
                pending["created"].add(obj.id)
            elif isinstance(obj, ProjectTag) and obj.project_id:
                pending["updated"].add(obj.project_id)
        for obj in session.dirty:
            if isinstance(obj, Project):
                pending["updated"].add(obj.id)
            elif isinstance(obj, ProjectTag):
                # A link moved to another project stales both documents.
                history = inspect(obj).attrs.project_id.history
                pending["updated"].update(pid for pid in (obj.project_id, *history.deleted) if pid)
        for obj in session.deleted:
            if isinstance(obj, Project):
                pending["deleted"].add(obj.id)
            elif isinstance(obj, ProjectTag) and obj.project_id:
                pending["updated"].add(obj.project_id)

    def _after_commit(self, session: Session) -> Optional[Future]:
        pending = session.info.pop(_PENDING_KEY, None)
        if not pending or not any(pending.values()):
            return None
        deleted = pending["deleted"]
        created = pending["created"] - deleted
        updated = pending["updated"] - deleted - created
        return self.executor.submit(self.sync, created=created, updated=updated, deleted=deleted)

    def _after_rollback(self, session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)

    # --- Replication ---
    def sync(self, created: Set[str] = frozenset(), updated: Set[str] = frozenset(),
             deleted: Set[str] = frozenset()) -> None:
        try:
            documents, removals = self._collect(set(created), set(updated))
            if documents:
                if self._push(lambda: self.client.add_documents(self.index_name, documents)):
                    logger.info(f"Indexed projects {', '.join(d['id'] for d in documents)}")
            removals.extend(sorted(deleted))
            if removals:
                if self._push(lambda: self.client.delete_documents(self.index_name, removals)):
                    logger.info(f"Removed projects {', '.join(removals)} from the search index")
        except Exception as e:
            logger.error(f"Search sync failed: {e}")

    def _collect(self, created: Set[str], updated: Set[str]):
        ids = created | updated
        if not ids:
            return [], []
        with self.session_factory() as db:
            projects = {p.id: p for p in _project_query(db).filter(Project.id.in_(ids)).all()}
            documents = []
            removals = []
            for project_id in sorted(ids):
                document = build_search_document(projects.get(project_id))
                if document:
                    documents.append(document)
                elif project_id in updated:
                    # Unpublished or gone: must not stay searchable.
                    removals.append(project_id)
            return documents, removals

    def _push(self, call: Callable[[], Any]) -> bool:
        for attempt in range(1, self.attempts + 1):
            try:
                call()
                return True
            except SearchUnavailableError as e:
                if attempt == self.attempts:
                    logger.error(f"Search index unavailable after {attempt} attempts: {e}")
                    return False
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(f"Search index unavailable (attempt {attempt}), retrying in {delay}s: {e}")
                self.sleep(delay)
            except MeilisearchApiError as e:
                logger.error(f"Search index rejected the request ({e.code}): {e.message}")
                return False
        return False
