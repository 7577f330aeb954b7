# Overview: Service-layer operations for bearer sessions; validation only, issuance lives outside the core.

"""
Session Token Validation with Tenant Context

Tokens are issued by an external login flow. The core only turns a bearer
token back into a SessionContext: user, business, store.

SECURITY FEATURES:
- Tokens hashed with SHA-256 before storage (fast, one-way)
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revocable; a deactivated user or business revokes on next use
- Tenant context (business_id) is immutable for the session lifetime
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import Business, SessionToken, User
from ..time_utils import utcnow


# Configuration constants
SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)  # Maximum session length
SESSION_IDLE_TIMEOUT = timedelta(hours=2)        # Activity timeout


@dataclass
class SessionContext:
    """
    Complete session context returned by validate_session.

    MULTI-TENANT: Contains both user identity and tenant context.
    All fields are set from the immutable session record.
    """
    user: User
    session: SessionToken
    business_id: int
    store_id: int | None


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy (unlike passwords), so SHA-256 is
    sufficient and keeps every request cheap.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Issue a session for a user (used by the external login flow and tests).

    Returns (session_record, plaintext_token). Only the hash is stored.
    """
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise ValueError("User not found or inactive")
    business = db.session.get(Business, user.business_id)
    if not business or not business.is_active:
        raise ValueError("Business is not active")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        business_id=user.business_id,
        store_id=user.store_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if the token is unknown, expired, idle too long or revoked,
    or if the user or business has been deactivated. Updates last_used_at
    on success.
    """
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()
    if not session:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None
    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None
    business = session.business
    if not business or not business.is_active:
        _revoke(session, "Business deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        business_id=session.business_id,
        store_id=session.store_id,
    )


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()
    if not session:
        return False
    _revoke(session, reason)
    return True
