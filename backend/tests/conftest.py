"""
Pytest fixtures for fulfillment portal backend tests.

Provides test database setup, two isolated client tenants with their
locations, admin and client users with bearer tokens, and a stubbed commerce
platform transport.
"""

import httpx
import pytest

from portal import create_app
from portal.config import TestConfig
from portal.extensions import db
from portal.models import Client, Sku, ShopifyStoreConnection
from portal.services import ledger_service
from portal.services.auth_service import create_user
from portal.services.session_service import create_session
from portal.time_utils import utcnow


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def photo_dir(app, tmp_path):
    """Point QC photo storage at a per-test directory."""
    original = app.config["QC_PHOTO_STORAGE_DIR"]
    app.config["QC_PHOTO_STORAGE_DIR"] = str(tmp_path / "qc-images")
    yield tmp_path / "qc-images"
    app.config["QC_PHOTO_STORAGE_DIR"] = original


def _make_tenant(db_session, name: str, code: str) -> Client:
    tenant = Client(name=name, code=code, status="active")
    db_session.add(tenant)
    db_session.flush()
    ledger_service.ensure_client_locations(tenant.id)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Client A (first tenant) with available / damaged / quarantine locations."""
    return _make_tenant(db_session, "Acme Goods", "ACME")


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Client B (second tenant)."""
    return _make_tenant(db_session, "Beta Supply", "BETA")


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user(email="ops@warehouse.test", password=PASSWORD, role="admin")


@pytest.fixture(scope='function')
def user_a(db_session, tenant_a):
    return create_user(email="owner@acme.test", password=PASSWORD, role="client", client_id=tenant_a.id)


@pytest.fixture(scope='function')
def user_b(db_session, tenant_b):
    return create_user(email="owner@beta.test", password=PASSWORD, role="client", client_id=tenant_b.id)


@pytest.fixture(scope='function')
def admin_token(admin_user):
    _, token = create_session(admin_user.id)
    return token


@pytest.fixture(scope='function')
def token_a(user_a):
    _, token = create_session(user_a.id)
    return token


@pytest.fixture(scope='function')
def token_b(user_b):
    _, token = create_session(user_b.id)
    return token


def _make_sku(db_session, tenant, client_sku, title=None, notes=None) -> Sku:
    sku = Sku(client_id=tenant.id, client_sku=client_sku, title=title, notes=notes, status="active")
    db_session.add(sku)
    db_session.commit()
    return sku


@pytest.fixture(scope='function')
def sku_a(db_session, tenant_a):
    return _make_sku(db_session, tenant_a, "TEE-BLK-M", "Black tee, medium")


@pytest.fixture(scope='function')
def sku_a2(db_session, tenant_a):
    return _make_sku(db_session, tenant_a, "TEE-WHT-L", "White tee, large")


@pytest.fixture(scope='function')
def sku_b(db_session, tenant_b):
    return _make_sku(db_session, tenant_b, "MUG-001", "Enamel mug")


@pytest.fixture(scope='function')
def make_sku(db_session):
    """Factory for extra SKUs: make_sku(tenant, "CODE", notes=...)."""
    def factory(tenant, client_sku, title=None, notes=None):
        return _make_sku(db_session, tenant, client_sku, title, notes)
    return factory


@pytest.fixture(scope='function')
def connection_a(db_session, tenant_a):
    """Active store connection for client A with a known platform location."""
    connection = ShopifyStoreConnection(
        client_id=tenant_a.id,
        shop_domain="acme-goods.myshopify.com",
        access_token="shpat_test_token",
        scope="read_products,write_inventory",
        is_active=True,
        shopify_location_id="555",
        connected_at=utcnow(),
    )
    db_session.add(connection)
    db_session.commit()
    return connection


class PlatformStub:
    """
    Stand-in for the commerce platform behind httpx.MockTransport.

    Handlers are registered per URL path suffix; a handler is either a JSON
    body (returned with status 200) or a callable taking the httpx.Request.
    Every request is recorded.
    """

    def __init__(self):
        self.requests = []
        self.handlers = []

    def on(self, path_suffix: str, handler, status: int = 200):
        self.handlers.append((path_suffix, handler, status))
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for path_suffix, handler, status in self.handlers:
            if request.url.path.endswith(path_suffix):
                if callable(handler):
                    return handler(request)
                return httpx.Response(status, json=handler)
        return httpx.Response(404, json={"errors": "Not Found"})


@pytest.fixture(scope='function')
def platform(app):
    """Route every platform HTTP call through a PlatformStub."""
    stub = PlatformStub()
    app.config["SHOPIFY_TRANSPORT"] = httpx.MockTransport(stub)
    yield stub
    app.config.pop("SHOPIFY_TRANSPORT", None)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin_token):
    return auth_headers(admin_token)


@pytest.fixture(scope='function')
def headers_a(token_a):
    return auth_headers(token_a)


@pytest.fixture(scope='function')
def headers_b(token_b):
    return auth_headers(token_b)
