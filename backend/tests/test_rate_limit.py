# Overview: Pytest coverage for the fixed-window rate limiter and its public endpoint.

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from portal.extensions import db
from portal.models import RateLimitEntry
from portal.services import rate_limit_service
from portal.time_utils import utcnow
from portal.validation import ValidationError


def _check(key="contact_form_submit", ip="10.0.0.1", max_attempts=5, window_minutes=10, now=None):
    return rate_limit_service.check_rate_limit(
        key=key, client_ip=ip, max_attempts=max_attempts, window_minutes=window_minutes, now=now
    )


class TestCheckRateLimit:

    def test_sixth_attempt_denied(self, db_session):
        now = utcnow()
        results = [_check(now=now + timedelta(seconds=i)) for i in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
        assert results[5].retry_after == 600

    def test_window_expiry_resets(self, db_session):
        now = utcnow()
        for i in range(5):
            _check(now=now)
        assert _check(now=now + timedelta(minutes=9)).allowed is False

        fresh = _check(now=now + timedelta(minutes=10))
        assert fresh.allowed is True
        assert fresh.remaining == 4
        assert db_session.query(RateLimitEntry).one().request_count == 1

    def test_counters_are_per_ip_and_key(self, db_session):
        for _ in range(5):
            _check(ip="10.0.0.1")
        assert _check(ip="10.0.0.2").allowed is True
        assert _check(key="intake_form_submit", ip="10.0.0.1").allowed is True
        assert db_session.query(RateLimitEntry).count() == 3

    def test_key_and_ip_never_collide(self, db_session):
        for _ in range(5):
            _check(key="login_a", ip="b_c")
        assert _check(key="login_a", ip="b_c").allowed is False

        assert _check(key="login_a_b", ip="c").allowed is True
        assert db_session.query(RateLimitEntry).count() == 2

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"key": "admin_delete"},
            {"key": ""},
            {"key": "login_" + "x" * 100},
            {"max_attempts": 0},
            {"max_attempts": 101},
            {"window_minutes": 1441},
            {"window_minutes": "1.5"},
        ],
    )
    def test_invalid_parameters(self, db_session, kwargs):
        with pytest.raises(ValidationError):
            _check(**kwargs)

    def test_fails_open_when_store_unavailable(self, db_session, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session, "query", broken)
        result = _check()
        assert result.allowed is True
        assert result.degraded is True

    def test_prune(self, db_session):
        now = utcnow()
        _check(ip="old", now=now - timedelta(days=2))
        _check(ip="new", now=now)
        assert rate_limit_service.prune_rate_limits(now=now) == 1


class TestRateLimitRoute:

    def _post(self, client, body, ip="203.0.113.9"):
        return client.post("/api/rate-limit/check", json=body, headers={"X-Forwarded-For": f"{ip}, 10.0.0.1"})

    def test_allows_then_429(self, client, db_session):
        body = {"key": "contact_form_submit", "maxAttempts": 2, "windowMinutes": 10}
        assert self._post(client, body).status_code == 200
        assert self._post(client, body).status_code == 200

        denied = self._post(client, body)
        assert denied.status_code == 429
        assert denied.get_json() == {"allowed": False, "remaining": 0, "retryAfter": 600}

        entry = db_session.query(RateLimitEntry).one()
        assert (entry.rate_key, entry.client_ip) == ("contact_form_submit", "203.0.113.9")

    def test_bad_key_is_400(self, client, db_session):
        response = self._post(client, {"key": "anything", "maxAttempts": 2, "windowMinutes": 10})
        assert response.status_code == 400

    def test_missing_body_is_400(self, client, db_session):
        assert client.post("/api/rate-limit/check").status_code == 400
