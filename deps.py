from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from db import get_db
from errors import ApiError
from models import User


@dataclass(frozen=True)
class Accountability:
    """Identity and permissions of the caller for the current request."""
    user: Optional[str] = None
    admin: bool = False


ANONYMOUS = Accountability()


def get_accountability(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Accountability:
    if not authorization:
        return ANONYMOUS
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ApiError(401, "Invalid user credentials")
    user = db.query(User).filter_by(token=token.strip()).one_or_none()
    if not user:
        raise ApiError(401, "Invalid user credentials")
    return Accountability(user=user.id, admin=bool(user.admin))


def require_user(accountability: Accountability = Depends(get_accountability)) -> str:
    if not accountability.user:
        raise ApiError(401, "Authentication required")
    return accountability.user
