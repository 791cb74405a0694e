from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from inv_app.audit import log_event
from inv_app.auth import authenticate
from inv_app.deps import session_dep
from inv_app.schemas import LoginRequest
from inv_app.security import get_current_user_from_session

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(session_dep),
) -> dict[str, str]:
    user = authenticate(db, username=payload.username, password=payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")

    request.session["username"] = user.username
    log_event(db, user, action="login", entity_type="auth", entity_id=user.username, detail={})
    return {"username": user.username, "role": user.role}


@router.post("/logout")
def logout(request: Request, db: Session = Depends(session_dep)) -> dict[str, str]:
    user = get_current_user_from_session(db, request)
    if user is not None:
        log_event(db, user, action="logout", entity_type="auth", entity_id=user.username, detail={})
    request.session.clear()
    return {"status": "logged out"}
