import logging
from typing import Literal

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from db import get_db
from errors import ApiError, internal_error
from models import Project

logger = logging.getLogger(__name__)

router = APIRouter()

CounterField = Literal["plays", "downloads"]


def increment_counter(db: Session, project_id: str, field: str) -> int:
    project = db.get(Project, project_id)
    if project is None:
        raise ApiError(404, "Project not found")
    column = getattr(Project, field)
    # Incremented in SQL so concurrent plays are not lost.
    setattr(project, field, func.coalesce(column, 0) + 1)
    db.commit()
    db.refresh(project)
    return getattr(project, field)


@router.post("/{project_id}/{field}", summary="Count a play or a download")
def increment_project_stat(project_id: str, field: CounterField, db: Session = Depends(get_db)):
    try:
        value = increment_counter(db, project_id, field)
        logger.info(f"Project {project_id} {field} -> {value}")
        return {"success": True, "data": {"project_id": project_id, "field": field, "value": value}}
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error incrementing {field} of project {project_id}: {e}")
        raise internal_error(e)
