"""Pytest configuration and shared fixtures."""
import httpx
import pytest
from fastapi.testclient import TestClient

from enclave.config import Settings
from enclave.context import create_context
from enclave.database import Database
from enclave.main import create_app
from enclave.services.audit_ledger import AuditLedger
from enclave.services.external import LedgerClient, MetadataClient
from enclave.services.signing import SigningService

TEST_KEY = "test-signing-key"
COMPOSE_HASH = "compose-abc123"


def metadata_transport(status_code=200, text=COMPOSE_HASH):
    def handler(request):
        return httpx.Response(status_code, text=text)
    return httpx.MockTransport(handler)


@pytest.fixture
def settings():
    return Settings(signing_key=TEST_KEY, enclave_id="cvm-test-1")


@pytest.fixture
def database():
    """Create a fresh in-memory database for each test."""
    db = Database.from_urls("sqlite://")
    db.create_schema()
    yield db
    db.close()


@pytest.fixture
def signer():
    return SigningService(TEST_KEY)


@pytest.fixture
def ledger(database):
    return AuditLedger(database)


@pytest.fixture
def compose_hash():
    return COMPOSE_HASH


@pytest.fixture
def make_metadata():
    """Factory for metadata clients answering with a given status."""
    clients = []

    def factory(status_code=200):
        client = MetadataClient(
            "http://metadata.local/compose-hash", transport=metadata_transport(status_code)
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture
def metadata(make_metadata):
    return make_metadata()


@pytest.fixture
def context(settings, database, metadata):
    """Persisted-mode context with no ledger submission credential."""
    ctx = create_context(settings, database=database, metadata=metadata, ledger_client=LedgerClient())
    yield ctx
    ctx.close()


@pytest.fixture
def memory_context(settings, metadata):
    """Context with no storage: in-memory signups, no-op ledger."""
    ctx = create_context(settings, metadata=metadata, ledger_client=LedgerClient())
    yield ctx
    ctx.close()


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as c:
        yield c


@pytest.fixture
def memory_client(memory_context):
    with TestClient(create_app(memory_context)) as c:
        yield c
