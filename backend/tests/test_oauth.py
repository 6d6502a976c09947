# Overview: Pytest coverage for store connection OAuth and cross-tenant shop protection.

from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from portal.models import OAuthState, ShopifyStoreConnection
from portal.services import oauth_service
from portal.services.oauth_service import OAuthStateError, ShopConnectionConflictError
from portal.services.shopify_client import ShopifyAPIError
from portal.time_utils import utcnow
from portal.validation import NotFoundError, ValidationError


SHOP = "acme-goods.myshopify.com"
TOKEN_PATH = "/admin/oauth/access_token"


@pytest.fixture
def token_exchange(platform):
    platform.on(TOKEN_PATH, {"access_token": "shpat_new", "scope": "read_orders,write_inventory"})
    return platform


class TestShopDomain:

    @pytest.mark.parametrize("raw", ["acme.myshopify.com", " https://ACME.myshopify.com/ "])
    def test_normalizes(self, raw):
        assert oauth_service.normalize_shop_domain(raw) == "acme.myshopify.com"

    @pytest.mark.parametrize("raw", ["", None, "acme.com", "evil.myshopify.com.attacker.io", "-x.myshopify.com"])
    def test_rejects(self, raw):
        with pytest.raises(ValidationError):
            oauth_service.normalize_shop_domain(raw)


class TestStartAuthorization:

    def test_state_persisted(self, app, db_session, tenant_a):
        url, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)

        parts = urlsplit(url)
        assert parts.netloc == SHOP
        assert parts.path == "/admin/oauth/authorize"
        query = parse_qs(parts.query)
        assert query["state"] == [state]
        assert query["client_id"] == [app.config["SHOPIFY_CLIENT_ID"]]

        row = db_session.query(OAuthState).filter_by(state=state).one()
        assert row.client_id == tenant_a.id
        assert row.shop_domain == SHOP

    def test_unknown_client(self, db_session):
        with pytest.raises(NotFoundError):
            oauth_service.start_authorization(client_id=999, shop=SHOP)


class TestCompleteAuthorization:

    def test_connects_store(self, db_session, tenant_a, token_exchange):
        _, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)
        connection = oauth_service.complete_authorization(code="abc", shop=SHOP, state=state)

        assert connection.client_id == tenant_a.id
        assert connection.access_token == "shpat_new"
        assert connection.is_active is True
        assert db_session.query(OAuthState).count() == 0
        assert token_exchange.requests[0].method == "POST"

    def test_state_single_use(self, db_session, tenant_a, token_exchange):
        _, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)
        oauth_service.complete_authorization(code="abc", shop=SHOP, state=state)
        with pytest.raises(OAuthStateError):
            oauth_service.complete_authorization(code="abc", shop=SHOP, state=state)

    def test_expired_state(self, db_session, tenant_a, token_exchange):
        _, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)
        row = db_session.query(OAuthState).filter_by(state=state).one()
        row.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        with pytest.raises(OAuthStateError):
            oauth_service.complete_authorization(code="abc", shop=SHOP, state=state)
        assert token_exchange.requests == []

    def test_state_bound_to_shop(self, db_session, tenant_a, token_exchange):
        _, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)
        with pytest.raises(OAuthStateError):
            oauth_service.complete_authorization(code="abc", shop="other.myshopify.com", state=state)

    def test_missing_parameters(self, db_session):
        with pytest.raises(ValidationError):
            oauth_service.complete_authorization(code=None, shop=SHOP, state="x")

    def test_shop_owned_by_other_client(self, db_session, tenant_b, connection_a, token_exchange):
        _, state = oauth_service.start_authorization(client_id=tenant_b.id, shop=SHOP)
        with pytest.raises(ShopConnectionConflictError):
            oauth_service.complete_authorization(code="abc", shop=SHOP, state=state)

        db_session.refresh(connection_a)
        assert connection_a.access_token == "shpat_test_token"
        assert token_exchange.requests == []

    def test_inactive_shop_reassigned(self, db_session, tenant_a, tenant_b, connection_a, token_exchange):
        oauth_service.disconnect_store(client_id=tenant_a.id)
        _, state = oauth_service.start_authorization(client_id=tenant_b.id, shop=SHOP)
        connection = oauth_service.complete_authorization(code="abc", shop=SHOP, state=state)

        assert connection.id == connection_a.id
        assert connection.client_id == tenant_b.id
        assert connection.shopify_location_id is None
        assert db_session.query(ShopifyStoreConnection).count() == 1

    def test_same_client_reconnect_refreshes_token(self, db_session, tenant_a, connection_a, token_exchange):
        _, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)
        connection = oauth_service.complete_authorization(code="abc", shop=SHOP, state=state)
        assert connection.id == connection_a.id
        assert connection.access_token == "shpat_new"

    def test_exchange_failure(self, db_session, tenant_a, platform):
        platform.on(TOKEN_PATH, lambda request: httpx.Response(400, json={"error": "invalid_request"}))
        _, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)
        with pytest.raises(ShopifyAPIError):
            oauth_service.complete_authorization(code="bad", shop=SHOP, state=state)
        assert db_session.query(ShopifyStoreConnection).count() == 0


class TestConnectionLifecycle:

    def test_disconnect(self, db_session, tenant_a, connection_a):
        connection = oauth_service.disconnect_store(client_id=tenant_a.id)
        assert connection.is_active is False
        assert oauth_service.get_active_connection(tenant_a.id) is None

    def test_disconnect_without_connection(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            oauth_service.disconnect_store(client_id=tenant_a.id)

    def test_cleanup_expired_states(self, db_session, tenant_a):
        now = utcnow()
        db_session.add_all([
            OAuthState(state="old", client_id=tenant_a.id, shop_domain=SHOP, expires_at=now - timedelta(minutes=5)),
            OAuthState(state="live", client_id=tenant_a.id, shop_domain=SHOP, expires_at=now + timedelta(minutes=5)),
        ])
        db_session.commit()

        assert oauth_service.cleanup_expired_states(now) == 1
        assert [row.state for row in db_session.query(OAuthState)] == ["live"]


class TestOAuthRoutes:

    def test_start_route(self, client, db_session, headers_a):
        response = client.get(f"/api/shopify/oauth/start?shop={SHOP}", headers=headers_a)
        assert response.status_code == 200
        assert response.get_json()["auth_url"].startswith(f"https://{SHOP}/admin/oauth/authorize")

    def test_callback_redirects_to_dashboard(self, app, client, db_session, tenant_a, token_exchange):
        _, state = oauth_service.start_authorization(client_id=tenant_a.id, shop=SHOP)
        response = client.get(f"/api/shopify/oauth/callback?code=abc&shop={SHOP}&state={state}")

        assert response.status_code == 302
        assert response.headers["Location"].startswith(app.config["DASHBOARD_URL"])
        assert "shopify_connected=true" in response.headers["Location"]

    def test_callback_error_redirect(self, client, db_session):
        response = client.get(f"/api/shopify/oauth/callback?code=abc&shop={SHOP}&state=bogus")
        assert response.status_code == 302
        assert "shopify_error=" in response.headers["Location"]
