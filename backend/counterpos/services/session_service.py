# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Service

Resolves a bearer token to the already-authenticated actor. How the token
was obtained (login form, SSO, operator CLI) is outside this service.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_TTL_HOURS)
- Revocable
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from counterpos.time_utils import utcnow


@dataclass
class SessionContext:
    """Actor identity established for one request."""
    user: User
    session: SessionToken

    @property
    def actor_id(self) -> int:
        return self.user.id

    @property
    def role(self):
        return self.user.role


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy, so a fast hash is sufficient.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create new session token for an active user.

    Returns (session_record, plaintext_token).
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + timedelta(hours=current_app.config["SESSION_TTL_HOURS"]),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Return SessionContext if the token is valid.

    Returns None if the token is unknown, expired or revoked, or the user
    is deactivated.
    """
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None
    if session.expires_at <= utcnow():
        return None

    user = session.user
    if not user or not user.is_active:
        return None

    return SessionContext(user=user, session=session)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
