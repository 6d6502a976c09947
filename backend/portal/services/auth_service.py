# Overview: Service-layer operations for auth; password hashing, user creation and login.

"""
Authentication Service

WHY: Every workflow transition must be attributable to a user. Uses bcrypt
for password hashing and validates password strength.

ROLES:
- admin: warehouse staff, no client_id, may act on any client
- client: confined to exactly one client_id

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
- Every login attempt is recorded as a SecurityEvent
"""

import re

import bcrypt

from ..extensions import db
from ..models import Client, SecurityEvent, User
from ..time_utils import utcnow
from ..validation import ValidationError, ConflictError, NotFoundError, require_choice, require_str


ROLES = ("admin", "client")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

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

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. A malformed hash never matches."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    *,
    email: str,
    password: str,
    role: str = "client",
    client_id: int | None = None,
) -> User:
    """
    Create a portal user.

    Raises:
        ValidationError: bad role, or role/client_id mismatch
        PasswordValidationError: weak password
        NotFoundError: client_id does not exist
        ConflictError: email already registered
    """
    email = require_str(email, "email", max_length=255).lower()
    role = require_choice(role, "role", ROLES)

    if role == "client":
        if client_id is None:
            raise ValidationError("client users require a client_id")
        if db.session.get(Client, client_id) is None:
            raise NotFoundError("Client not found")
    elif client_id is not None:
        raise ValidationError("admin users are not bound to a client")

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(password),
        role=role,
        client_id=client_id,
    )
    db.session.add(user)
    db.session.commit()
    return user


def record_security_event(
    *,
    event_type: str,
    success: bool,
    user_id: int | None = None,
    client_id: int | None = None,
    resource: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
) -> SecurityEvent:
    """Append a security event. Flushes; the caller commits."""
    event = SecurityEvent(
        event_type=event_type,
        success=success,
        user_id=user_id,
        client_id=client_id,
        resource=resource,
        reason=reason,
        ip_address=ip_address,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.flush()
    return event


def authenticate(email: str, password: str, *, ip_address: str | None = None) -> User | None:
    """
    Authenticate by email and password.

    Returns the User if credentials are valid and the account (and its client,
    for client users) is active, None otherwise. Both outcomes are recorded.
    """
    email = (email or "").strip().lower()
    user = db.session.query(User).filter(User.email == email).first()

    reason = None
    if user is None or not verify_password(password or "", user.password_hash):
        reason = "invalid_credentials"
    elif not user.is_active:
        reason = "user_inactive"
    elif user.client is not None and user.client.status != "active":
        reason = "client_inactive"

    if reason is not None:
        record_security_event(
            event_type="LOGIN_FAILED",
            success=False,
            user_id=user.id if user else None,
            client_id=user.client_id if user else None,
            resource=email,
            reason=reason,
            ip_address=ip_address,
        )
        db.session.commit()
        return None

    user.last_login_at = utcnow()
    record_security_event(
        event_type="LOGIN_SUCCESS",
        success=True,
        user_id=user.id,
        client_id=user.client_id,
        resource=email,
        ip_address=ip_address,
    )
    db.session.commit()
    return user
