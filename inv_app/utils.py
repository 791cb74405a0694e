from __future__ import annotations

import os
import secrets
from datetime import datetime, timezone
from typing import Callable

from inv_app.ledger_config import TicketConfig


def get_session_secret() -> str:
    """Returns the session secret key, generating a random one when unset."""
    secret = os.getenv("SESSION_SECRET", "").strip()
    if not secret:
        secret = secrets.token_hex(32)
    return secret


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ticket_factory(config: TicketConfig) -> Callable[[], str]:
    """Builds a generator of random job tickets such as ``Auto-Ticket: 482913``.

    Collisions are tolerated: they only blur grouping in the transactions log.
    """
    span = config.max_value - config.min_value + 1

    def generate() -> str:
        return f"{config.prefix}{config.min_value + secrets.randbelow(span)}"

    return generate
