import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from db import get_db
from deps import Accountability, get_accountability, require_user
from errors import ApiError, internal_error
from models import EVENT_NEW_LIKE, NOTIFICATION_UNREAD, Like, Notification, Project, User

logger = logging.getLogger(__name__)

router = APIRouter()


class ToggleLikeRequest(BaseModel):
    project_id: Optional[str] = None


class LikeData(BaseModel):
    project_id: str
    user_id: str
    likes_count: int
    user_has_liked: bool


class ToggleLikeResponse(BaseModel):
    success: bool
    action: str
    message: str
    data: LikeData


class LikeStatusResponse(BaseModel):
    project_id: str
    user_has_liked: bool
    total_likes: int


# --- REPOSITORY PATTERN ---
class LikeRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_project(self, project_id: str) -> Project:
        project = self.db.get(Project, project_id)
        if project is None:
            raise ApiError(404, "Project not found")
        return project

    def has_liked(self, project_id: str, user_id: str) -> bool:
        return self.db.query(Like.id).filter_by(project_id=project_id, user_id=user_id).first() is not None

    def toggle(self, project_id: str, user_id: str) -> ToggleLikeResponse:
        project = self.get_project(project_id)
        created = False

        # The unique (project_id, user_id) constraint and the in-statement
        # counter arithmetic keep concurrent toggles from double counting.
        removed = self.db.query(Like).filter_by(
            project_id=project_id, user_id=user_id
        ).delete(synchronize_session=False)
        if removed:
            current = func.coalesce(Project.likes_count, 0)
            project.likes_count = case((current > 0, current - 1), else_=0)
            action, message = "unliked", "Like removed"
        else:
            self.db.add(Like(project_id=project_id, user_id=user_id))
            project.likes_count = func.coalesce(Project.likes_count, 0) + 1
            action, message = "liked", "Project liked"

        try:
            self.db.commit()
            created = not removed
        except IntegrityError:
            # Another request liked the project between our delete and insert.
            self.db.rollback()
            logger.warning(f"Concurrent like detected for project {project_id} by user {user_id}")
            action, message = "liked", "Project liked"

        self.db.refresh(project)

        if created:
            self.notify_owner(project, user_id)

        logger.info(f"Like action: {action} - Project {project_id} by user {user_id}")
        return ToggleLikeResponse(
            success=True,
            action=action,
            message=message,
            data=LikeData(
                project_id=project_id,
                user_id=user_id,
                likes_count=project.likes_count or 0,
                user_has_liked=action == "liked",
            ),
        )

    def notify_owner(self, project: Project, liker_id: str) -> Optional[Notification]:
        owner_id = project.user_created
        if not owner_id or owner_id == liker_id:
            logger.info(f"Notification skipped: owner={owner_id}, user={liker_id}")
            return None

        try:
            liker = self.db.get(User, liker_id)
            liker_name = (liker.full_name if liker else "") or "Someone"
            notification = Notification(
                user_id=owner_id,
                message=f'{liker_name} liked your project "{project.title}"',
                project_id=project.id,
                event_type=EVENT_NEW_LIKE,
                status=NOTIFICATION_UNREAD,
                triggered_by=liker_id,
            )
            self.db.add(notification)
            self.db.commit()
            logger.info(f"Notification {notification.id} created for user {owner_id} - like on project {project.id}")
            return notification
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create like notification for project {project.id}: {e}")
            return None

    def status(self, project_id: str, user_id: str) -> LikeStatusResponse:
        project = self.get_project(project_id)
        return LikeStatusResponse(
            project_id=project_id,
            user_has_liked=self.has_liked(project_id, user_id),
            total_likes=project.likes_count or 0,
        )

    def user_likes(self, user_id: str) -> List[dict]:
        rows = (
            self.db.query(Like)
            .options(joinedload(Like.project))
            .filter(Like.user_id == user_id)
            .order_by(Like.date_created.desc(), Like.id.desc())
            .all()
        )
        return [
            {
                "id": like.id,
                "project_id": like.project.to_dict() if like.project else None,
                "date_created": like.date_created.isoformat() if like.date_created else None,
            }
            for like in rows
        ]


# --- DEPENDENCY INJECTION ---
def get_like_repository(db: Session = Depends(get_db)) -> LikeRepository:
    return LikeRepository(db=db)


# --- API ENDPOINTS ---
@router.post("/toggle", response_model=ToggleLikeResponse, summary="Like or unlike a project")
def toggle_like(
    request: ToggleLikeRequest,
    accountability: Accountability = Depends(get_accountability),
    repo: LikeRepository = Depends(get_like_repository),
):
    if not request.project_id or not accountability.user:
        raise ApiError(400, "project_id and user_id are required")
    try:
        return repo.toggle(request.project_id, accountability.user)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error in like toggle for project {request.project_id}: {e}")
        raise internal_error(e)


@router.get("/status/{project_id}", response_model=LikeStatusResponse, summary="Like status of a project")
def like_status(
    project_id: str,
    user_id: str = Depends(require_user),
    repo: LikeRepository = Depends(get_like_repository),
):
    try:
        return repo.status(project_id, user_id)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error reading like status for project {project_id}: {e}")
        raise internal_error(e)


@router.get("/user-likes", summary="Projects liked by the current user")
def user_likes(
    user_id: str = Depends(require_user),
    repo: LikeRepository = Depends(get_like_repository),
):
    try:
        data = repo.user_likes(user_id)
        return {"success": True, "data": data, "count": len(data)}
    except Exception as e:
        logger.error(f"Error listing likes of user {user_id}: {e}")
        raise internal_error(e)
