from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from inv_app.models import User

logger = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 200_000

ROLE_ADMIN = "admin"
ROLE_OPERATOR = "operator"


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return "pbkdf2_sha256${}${}${}".format(
        _PBKDF2_ITERATIONS,
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(dk).decode("ascii"),
    )


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iters_s, salt_b64, hash_b64 = password_hash.split("$", 3)
        iters = int(iters_s)
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected = base64.b64decode(hash_b64.encode("ascii"))
    except (ValueError, binascii.Error):
        return False
    if algo != "pbkdf2_sha256":
        return False

    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iters)
    return hmac.compare_digest(dk, expected)


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    u = (username or "").strip()
    if not u:
        return None
    return db.scalar(select(User).where(User.username == u))


def authenticate(db: Session, username: str, password: str) -> Optional[User]:
    user = get_user_by_username(db, username)
    if user is None or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    return user


def ensure_default_users(db: Session) -> None:
    """Create (or re-activate) the bootstrap admin and operator accounts."""
    defaults = [
        (os.getenv("ADMIN_USERNAME", "admin"), os.getenv("ADMIN_PASSWORD", "admin"), ROLE_ADMIN),
        (os.getenv("OPERATOR_USERNAME", "operator"), os.getenv("OPERATOR_PASSWORD", "operator"), ROLE_OPERATOR),
    ]
    for username, password, role in defaults:
        username = (username or "").strip()
        if not username:
            continue
        existing = get_user_by_username(db, username)
        if existing is None:
            db.add(User(username=username, password_hash=hash_password(password or ""), role=role, is_active=True))
            logger.info(f"Created {role} user {username!r}")
        else:
            existing.role = role
            existing.is_active = True
    db.commit()
