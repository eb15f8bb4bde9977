"""
Pytest fixtures for RackTrack backend tests.

Provides the application on in-memory SQLite, per-test table wipe, users with
bearer tokens, and a fake QuickBooks client standing in for Intuit.
"""

from datetime import timedelta

import pytest

from racktrack import create_app
from racktrack.config import Config
from racktrack.extensions import db
from racktrack.models import Customer, Product, QBConnection, User
from racktrack.models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF
from racktrack.services import session_service
from racktrack.services.quickbooks_client import TokenSet
from racktrack.time_utils import utcnow


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    QB_CLIENT_ID = "test-client-id"
    QB_CLIENT_SECRET = "test-client-secret"
    QB_REDIRECT_URI = "http://localhost/api/quickbooks/callback"
    QUICKBOOKS_SANDBOX = True
    CRON_SECRET = "cron-test-secret"
    QB_REFRESH_MAX_WORKERS = 2


class FakeQuickBooksClient:
    """
    In-memory stand-in for QuickBooksClient.

    Set `refresh_failures[refresh_token] = exc`, `query_failures[(entity, start)] = exc`
    or `exchange_error = exc` to make a call fail; inspect `calls` to see what
    was requested.
    """

    base_url = "https://sandbox-quickbooks.api.intuit.com"

    def __init__(self):
        self.calls = []
        self.company = {"Id": "9130", "CompanyName": "Acme Racks"}
        self.items = []
        self.customers = []
        self.estimates = {}
        self.exchange_error = None
        self.company_error = None
        self.refresh_failures = {}
        self.query_failures = {}
        self._issued = 0

    def _tokens(self, expires_in=3600):
        self._issued += 1
        return TokenSet(
            access_token=f"access-{self._issued}",
            refresh_token=f"refresh-{self._issued}",
            expires_at=utcnow() + timedelta(seconds=expires_in),
        )

    def authorization_url(self, state):
        self.calls.append(("authorization_url", state))
        return f"https://appcenter.intuit.com/connect/oauth2?state={state}"

    def exchange_code(self, code, realm_id):
        self.calls.append(("exchange_code", code, realm_id))
        if self.exchange_error is not None:
            raise self.exchange_error
        return self._tokens()

    def get_company_info(self, access_token, realm_id):
        self.calls.append(("get_company_info", realm_id))
        if self.company_error is not None:
            raise self.company_error
        return dict(self.company)

    def refresh(self, refresh_token):
        self.calls.append(("refresh", refresh_token))
        error = self.refresh_failures.get(refresh_token)
        if error is not None:
            raise error
        return self._tokens()

    def query(self, access_token, realm_id, entity, *, start_position=1, max_results=20):
        self.calls.append(("query", entity, start_position, max_results))
        error = self.query_failures.get((entity, start_position))
        if error is not None:
            raise error
        rows = self.items if entity == "Item" else self.customers
        return rows[start_position - 1:start_position - 1 + max_results]

    def get_estimate(self, access_token, realm_id, estimate_id):
        self.calls.append(("get_estimate", estimate_id))
        return self.estimates[estimate_id]

    def save_estimate(self, access_token, realm_id, payload):
        self.calls.append(("save_estimate", payload))
        estimate_id = payload.get("Id") or str(100 + len(self.estimates))
        previous = self.estimates.get(estimate_id, {"SyncToken": "-1"})
        saved = dict(payload, Id=estimate_id, SyncToken=str(int(previous["SyncToken"]) + 1), DocNumber=f"E-{estimate_id}")
        self.estimates[estimate_id] = saved
        return saved

    def call_names(self):
        return [c[0] for c in self.calls]


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
def fake_qb(app):
    """Fake QuickBooks client injected for routes and CLI."""
    fake = FakeQuickBooksClient()
    app.extensions["quickbooks_client"] = fake
    yield fake
    app.extensions.pop("quickbooks_client", None)


def _make_user(db_session, email, role):
    user = User(email=email, name=email.split("@")[0], role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin@racktrack.local", ROLE_ADMIN)


@pytest.fixture(scope='function')
def staff_user(db_session):
    return _make_user(db_session, "staff@racktrack.local", ROLE_STAFF)


@pytest.fixture(scope='function')
def manager_user(db_session):
    return _make_user(db_session, "manager@racktrack.local", ROLE_MANAGER)


@pytest.fixture(scope='function')
def admin_token(admin_user):
    _, token = session_service.issue_session(admin_user.id)
    return token


@pytest.fixture(scope='function')
def staff_token(staff_user):
    _, token = session_service.issue_session(staff_user.id)
    return token


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Northwind Storage", company_name="Northwind Storage LLC", qb_customer_id="58")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def product(db_session):
    p = Product(sku="BEAM-96", name="96in Load Beam", sell_price_cents=4250)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def make_connection(db_session):
    """Factory: make_connection(company_id="9130", expires_in=timedelta(hours=1), **overrides)."""
    def _make(company_id="9130", expires_in=timedelta(hours=1), **overrides):
        values = dict(
            company_id=company_id,
            company_name=f"Company {company_id}",
            realm_id=company_id,
            base_url=FakeQuickBooksClient.base_url,
            access_token=f"access-for-{company_id}",
            refresh_token=f"refresh-for-{company_id}",
            token_expires_at=utcnow() + expires_in,
            is_active=True,
        )
        values.update(overrides)
        conn = QBConnection(**values)
        db_session.add(conn)
        db_session.commit()
        return conn
    return _make


@pytest.fixture(scope='function')
def connection(make_connection):
    return make_connection()


@pytest.fixture(scope='function')
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture(scope='function')
def staff_headers(staff_token):
    return {"Authorization": f"Bearer {staff_token}"}


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    _, token = session_service.issue_session(manager_user.id)
    return {"Authorization": f"Bearer {token}"}
