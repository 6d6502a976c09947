# Overview: Store connection lifecycle; OAuth state, token exchange, and cross-tenant protection.

from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta
from urllib.parse import urlencode

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Client, OAuthState, ShopifyStoreConnection
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from .shopify_client import exchange_oauth_code
"""
OAuth Invariants

- A state nonce is persisted per authorization attempt, bound to one client
  and one shop, and expires after OAUTH_STATE_TTL_MINUTES.
- The state row is consumed (deleted and committed) before the code is
  exchanged, so a callback can be replayed at most once.
- shop_domain is globally unique. If another client holds an active
  connection for the shop, the callback is rejected; the existing token is
  never overwritten. The same client reconnecting refreshes its token.
"""


SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")


class OAuthStateError(ValidationError):
    """Missing, expired, or mismatched OAuth state."""


class ShopConnectionConflictError(ConflictError):
    """The shop is already connected to a different client."""


def normalize_shop_domain(shop: str | None) -> str:
    value = (shop or "").strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
    value = value.rstrip("/")
    if not SHOP_DOMAIN_RE.match(value):
        raise ValidationError("shop must be a valid *.myshopify.com domain")
    return value


def get_active_connection(client_id: int) -> ShopifyStoreConnection | None:
    return (
        db.session.query(ShopifyStoreConnection)
        .filter_by(client_id=client_id, is_active=True)
        .order_by(ShopifyStoreConnection.id.asc())
        .first()
    )


def get_connection_by_domain(shop_domain: str, *, active_only: bool = True) -> ShopifyStoreConnection | None:
    query = db.session.query(ShopifyStoreConnection).filter_by(shop_domain=(shop_domain or "").strip().lower())
    if active_only:
        query = query.filter_by(is_active=True)
    return query.first()


def start_authorization(*, client_id: int, shop: str) -> tuple[str, str]:
    """Persist a state nonce and build the platform authorize URL. Returns (auth_url, state)."""
    shop_domain = normalize_shop_domain(shop)
    if db.session.query(Client.id).filter_by(id=client_id).first() is None:
        raise NotFoundError(f"Client {client_id} not found")

    state = secrets.token_urlsafe(32)
    db.session.add(
        OAuthState(
            state=state,
            client_id=client_id,
            shop_domain=shop_domain,
            expires_at=utcnow() + timedelta(minutes=current_app.config["OAUTH_STATE_TTL_MINUTES"]),
        )
    )
    db.session.commit()

    query = urlencode({
        "client_id": current_app.config["SHOPIFY_CLIENT_ID"],
        "scope": current_app.config["SHOPIFY_SCOPES"],
        "redirect_uri": current_app.config["SHOPIFY_OAUTH_REDIRECT_URL"],
        "state": state,
    })
    return f"https://{shop_domain}/admin/oauth/authorize?{query}", state


def _consume_state(state: str, shop_domain: str) -> int:
    """Delete the state row and return its client_id. Commits."""
    row = db.session.query(OAuthState).filter_by(state=state).first()
    if row is None:
        raise OAuthStateError("Unknown or already used OAuth state")

    client_id, bound_shop, expires_at = row.client_id, row.shop_domain, row.expires_at
    db.session.delete(row)
    db.session.commit()

    if expires_at < utcnow():
        raise OAuthStateError("OAuth state has expired")
    if bound_shop != shop_domain:
        raise OAuthStateError("OAuth state was issued for a different shop")
    return client_id


def _check_collision(shop_domain: str, client_id: int) -> ShopifyStoreConnection | None:
    existing = get_connection_by_domain(shop_domain, active_only=False)
    if existing is not None and existing.client_id != client_id:
        if existing.is_active:
            current_app.logger.warning(
                "Rejected connection of %s for client %s: already connected to client %s",
                shop_domain, client_id, existing.client_id,
            )
            raise ShopConnectionConflictError("This store is already connected to another account")
        current_app.logger.warning(
            "Reassigning inactive connection %s from client %s to client %s",
            shop_domain, existing.client_id, client_id,
        )
    return existing


def complete_authorization(*, code: str | None, shop: str | None, state: str | None) -> ShopifyStoreConnection:
    """
    Finish the OAuth callback: consume state, exchange the code, store the token.

    Raises:
        ValidationError / OAuthStateError: bad parameters or state
        ShopConnectionConflictError: shop already connected to another client
        ShopifyAPIError: token exchange failed
    """
    if not code or not shop or not state:
        raise ValidationError("Missing required OAuth parameters")
    shop_domain = normalize_shop_domain(shop)
    client_id = _consume_state(state, shop_domain)

    _check_collision(shop_domain, client_id)
    token = exchange_oauth_code(shop_domain=shop_domain, code=code)

    # Re-read: another callback may have landed during the exchange
    existing = _check_collision(shop_domain, client_id)
    now = utcnow()
    if existing is None:
        connection = ShopifyStoreConnection(
            client_id=client_id,
            shop_domain=shop_domain,
            access_token=token["access_token"],
            scope=token.get("scope"),
            is_active=True,
            connected_at=now,
        )
        db.session.add(connection)
    else:
        connection = existing
        if connection.client_id != client_id:
            connection.shopify_location_id = None
        connection.client_id = client_id
        connection.access_token = token["access_token"]
        connection.scope = token.get("scope")
        connection.is_active = True
        connection.connected_at = now
        connection.disconnected_at = None

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ShopConnectionConflictError("This store is already connected to another account")

    current_app.logger.info("Connected store %s for client %s", shop_domain, client_id)
    return connection


def deactivate_connection(connection: ShopifyStoreConnection) -> None:
    """Mark a connection inactive. Flushes, does not commit."""
    connection.is_active = False
    connection.disconnected_at = utcnow()
    db.session.flush()


def disconnect_store(*, client_id: int) -> ShopifyStoreConnection:
    connection = get_active_connection(client_id)
    if connection is None:
        raise NotFoundError("No active store connection")
    deactivate_connection(connection)
    db.session.commit()
    current_app.logger.info("Disconnected store %s for client %s", connection.shop_domain, client_id)
    return connection


def cleanup_expired_states(now: datetime | None = None) -> int:
    deleted = (
        db.session.query(OAuthState)
        .filter(OAuthState.expires_at < (now or utcnow()))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return int(deleted or 0)
