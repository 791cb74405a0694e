from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from inv_app.auth import ROLE_ADMIN, get_user_by_username
from inv_app.deps import session_dep
from inv_app.models import User


def get_current_user_from_session(db: Session, request: Request) -> Optional[User]:
    username = request.session.get("username")
    if not username:
        return None
    user = get_user_by_username(db, str(username))
    if user is None or not user.is_active:
        return None
    return user


def require_user_api(
    request: Request,
    db: Session = Depends(session_dep),
) -> User:
    user = get_current_user_from_session(db, request)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_role(*roles: str) -> Callable[..., User]:
    """Dependency factory: the session user must hold one of ``roles``."""
    allowed = {r.lower() for r in roles}

    def dependency(user: User = Depends(require_user_api)) -> User:
        if (user.role or "").lower() not in allowed:
            raise HTTPException(status_code=403, detail=f"Role required: {', '.join(sorted(allowed))}")
        return user

    return dependency


require_admin_api = require_role(ROLE_ADMIN)
