# Overview: Service-layer operations for rate limiting; fixed-window counters stored per key and IP.

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import RateLimitEntry
from ..time_utils import utcnow
from ..validation import ValidationError, require_int, require_str
"""
Rate Limiting

- One row per (rate_key, client_ip), stored as separate columns so no
  key/IP pair can collide with another.
- No row, or window elapsed: start a fresh window with count 1 and allow.
- Inside the window: allow and increment while count < max_attempts,
  otherwise deny with retry_after = the full window length in seconds.
- FAIL OPEN: if the counter store cannot be read or written, the request is
  allowed and the result is flagged degraded. Input validation is not part of
  that policy; bad parameters are rejected before the store is touched.
"""


ALLOWED_KEY_PREFIXES = ("login_", "password_reset_", "contact_form_", "intake_form_")
MAX_ATTEMPTS_LIMIT = 100
MAX_WINDOW_MINUTES = 1440
MAX_KEY_LENGTH = 100


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int | None = None
    degraded: bool = False

    def to_dict(self) -> dict:
        data = {"allowed": self.allowed, "remaining": self.remaining}
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        return data


def _validate(key, max_attempts, window_minutes) -> tuple[str, int, int]:
    key = require_str(key, "key")
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(f"key must be at most {MAX_KEY_LENGTH} characters")
    if not key.startswith(ALLOWED_KEY_PREFIXES):
        raise ValidationError("Invalid rate limit key")

    max_attempts = require_int(max_attempts, "max_attempts", minimum=1)
    if max_attempts > MAX_ATTEMPTS_LIMIT:
        raise ValidationError(f"max_attempts must be <= {MAX_ATTEMPTS_LIMIT}")

    window_minutes = require_int(window_minutes, "window_minutes", minimum=1)
    if window_minutes > MAX_WINDOW_MINUTES:
        raise ValidationError(f"window_minutes must be <= {MAX_WINDOW_MINUTES}")

    return key, max_attempts, window_minutes


def check_rate_limit(
    *,
    key: str,
    client_ip: str | None,
    max_attempts: int = 5,
    window_minutes: int = 15,
    now=None,
) -> RateLimitResult:
    """
    Count one attempt against (key, client_ip) and report whether it is allowed.

    Raises ValidationError for a bad key or out-of-range limits. Never raises
    for storage failures (fails open).
    """
    key, max_attempts, window_minutes = _validate(key, max_attempts, window_minutes)
    client_ip = (client_ip or "unknown")[:45]
    now = now or utcnow()
    window = timedelta(minutes=window_minutes)

    try:
        entry = db.session.query(RateLimitEntry).filter_by(rate_key=key, client_ip=client_ip).first()

        if entry is None or entry.window_start + window <= now:
            if entry is None:
                entry = RateLimitEntry(rate_key=key, client_ip=client_ip)
                db.session.add(entry)
            entry.window_start = now
            entry.request_count = 1
            entry.updated_at = now
            db.session.commit()
            return RateLimitResult(allowed=True, remaining=max_attempts - 1)

        if entry.request_count >= max_attempts:
            return RateLimitResult(allowed=False, remaining=0, retry_after=window_minutes * 60)

        entry.request_count += 1
        entry.updated_at = now
        db.session.commit()
        return RateLimitResult(allowed=True, remaining=max_attempts - entry.request_count)

    except IntegrityError:
        # Another request created the same window first; count against it.
        db.session.rollback()
        return check_rate_limit(
            key=key,
            client_ip=client_ip,
            max_attempts=max_attempts,
            window_minutes=window_minutes,
            now=now,
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Rate limit store unavailable for %s from %s; allowing request", key, client_ip, exc_info=True
        )
        return RateLimitResult(allowed=True, remaining=max_attempts, degraded=True)


def prune_rate_limits(*, older_than_minutes: int = MAX_WINDOW_MINUTES, now=None) -> int:
    """Delete counters whose window started before the longest allowed window."""
    cutoff = (now or utcnow()) - timedelta(minutes=older_than_minutes)
    deleted = (
        db.session.query(RateLimitEntry)
        .filter(RateLimitEntry.window_start < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
