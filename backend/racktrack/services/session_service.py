# Overview: Bearer session tokens for API callers; issue, validate and revoke.

"""
Session Token Service

- Tokens are 32 random bytes (64 hex chars), handed to the client once
- Only the SHA-256 hash is stored
- Absolute expiry set at issue time (SESSION_TTL_HOURS)
- Revoked or expired tokens, and tokens of deactivated users, are rejected
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from racktrack.time_utils import as_naive_utc, utcnow


DEFAULT_SESSION_TTL = timedelta(hours=24)


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough here: tokens are already high-entropy."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_session(user_id: int, ttl: timedelta = DEFAULT_SESSION_TTL) -> tuple[SessionToken, str]:
    """
    Create a session for an active user.

    Returns (session_record, plaintext_token).
    Raises ValueError if the user does not exist or is inactive.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User is not active")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + ttl,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """Return the SessionContext for a live token, None otherwise."""
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return None
    if as_naive_utc(session.expires_at) <= utcnow():
        return None

    user = session.user
    if user is None or not user.is_active:
        return None
    return SessionContext(user=user, session=session)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
