# Overview: Service-layer operations for users, passwords and approval PINs.

"""
User and credential management.

WHY: Every money-moving action is attributable to a user, and the two
approval flows (manager PIN, owner override) both need credential checks
that never store or compare plaintext.

SECURITY NOTES:
- Passwords and approval PINs hashed with bcrypt (cost from BCRYPT_ROUNDS)
- Minimum 8 character passwords, mixed character classes
- PINs are 4-8 digits and only meaningful for OWNER/MANAGER users
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Business, User
from ..permissions import APPROVER_ROLES, OWNER, ROLES


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserError(Exception):
    """Raised for user management errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


PIN_PATTERN = re.compile(r"^\d{4,8}$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def _bcrypt_hash(secret: str) -> str:
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(secret.encode('utf-8'), salt).decode('utf-8')


def _bcrypt_check(secret: str, secret_hash: str | None) -> bool:
    if not secret or not secret_hash:
        return False
    try:
        return bcrypt.checkpw(secret.encode('utf-8'), secret_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def hash_password(password: str) -> str:
    validate_password_strength(password)
    return _bcrypt_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return _bcrypt_check(password, password_hash)


def hash_pin(pin: str) -> str:
    if not PIN_PATTERN.match(pin or ""):
        raise PasswordValidationError("PIN must be 4 to 8 digits")
    return _bcrypt_hash(pin)


def verify_pin(pin: str, pin_hash: str | None) -> bool:
    return _bcrypt_check(pin, pin_hash)


def create_user(
    *,
    business_id: int,
    username: str,
    password: str,
    role: str,
    store_id: int | None = None,
    approval_pin: str | None = None,
) -> User:
    """
    Create a user in a business. Approval PINs are only accepted for roles
    that can approve.
    """
    if role not in ROLES:
        raise UserError(f"Unknown role {role}", {"role": role})
    business = db.session.get(Business, business_id)
    if business is None or not business.is_active:
        raise UserError("Business not found or inactive", {"business_id": business_id})
    if approval_pin and role not in APPROVER_ROLES:
        raise UserError("Only owners and managers can hold an approval PIN", {"role": role})
    existing = db.session.query(User).filter_by(business_id=business_id, username=username).first()
    if existing:
        raise UserError(f"Username {username} already exists", {"username": username})

    user = User(
        business_id=business_id,
        store_id=store_id,
        username=username,
        role=role,
        password_hash=hash_password(password),
        approval_pin_hash=hash_pin(approval_pin) if approval_pin else None,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def set_approval_pin(user_id: int, pin: str) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise UserError("User not found", {"user_id": user_id})
    if user.role not in APPROVER_ROLES:
        raise UserError("Only owners and managers can hold an approval PIN", {"role": user.role})
    user.approval_pin_hash = hash_pin(pin)
    db.session.commit()
    return user


def find_approver_by_pin(business_id: int, pin: str) -> User | None:
    """
    Resolve a manager PIN to the active OWNER/MANAGER it belongs to.

    PINs are not unique, so every approver in the business is checked;
    the first match wins (ordered by id for determinism).
    """
    if not pin:
        return None
    candidates = (
        db.session.query(User)
        .filter(
            User.business_id == business_id,
            User.is_active.is_(True),
            User.role.in_(APPROVER_ROLES),
            User.approval_pin_hash.isnot(None),
        )
        .order_by(User.id.asc())
        .all()
    )
    for user in candidates:
        if verify_pin(pin, user.approval_pin_hash):
            return user
    return None


def find_owner_by_password(business_id: int, password: str) -> User | None:
    if not password:
        return None
    owners = (
        db.session.query(User)
        .filter(User.business_id == business_id, User.is_active.is_(True), User.role == OWNER)
        .order_by(User.id.asc())
        .all()
    )
    for owner in owners:
        if verify_password(password, owner.password_hash):
            return owner
    return None
