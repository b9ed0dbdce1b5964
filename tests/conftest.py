import pytest

from escrow_service.api.production_server import ProductionAPIServer
from escrow_service.config.production import ProductionConfig
from escrow_service.config.routing import RoutingConfig
from escrow_service.database import StoreBundle, create_stores
from escrow_service.database.memory_store import InMemoryTransactionStore, InMemoryWalletStore
from escrow_service.services import build_services


class ManualTimers:
    """Timer factory that records deferred completions until fired by hand."""

    def __init__(self):
        self.pending = []

    def __call__(self, delay_seconds, callback, fee_transaction_id):
        self.pending.append((delay_seconds, callback, fee_transaction_id))
        return fee_transaction_id

    @property
    def delays(self):
        return [delay for delay, _, _ in self.pending]

    def fire_all(self):
        pending, self.pending = self.pending, []
        for _, callback, fee_transaction_id in pending:
            callback(fee_transaction_id)
        return len(pending)


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    for name in ('ESCROW_DB_BACKEND', 'ESCROW_DB_ALLOW_FALLBACK', 'SQLITE_PATH', 'DB_PASSWORD',
                 'RATE_LIMIT_STORAGE', 'LOG_JSON_FORMAT', 'LOG_LEVEL', 'API_SECRET_KEY'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('LOG_FILE_PATH', '')
    monkeypatch.setenv('ENABLE_RATE_LIMITING', 'false')


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def memory_stores():
    return StoreBundle(InMemoryTransactionStore(), InMemoryWalletStore(), 'memory')


@pytest.fixture
def routing_config():
    return RoutingConfig()


@pytest.fixture
def services(memory_stores, routing_config, timers):
    return build_services(memory_stores, routing_config, timer_factory=timers)


@pytest.fixture
def app_config():
    return ProductionConfig()


@pytest.fixture
def server(app_config, memory_stores, timers):
    return ProductionAPIServer(app_config, stores=memory_stores, timer_factory=timers)


@pytest.fixture
def client(server):
    return server.app.test_client()


@pytest.fixture
def sqlite_config(monkeypatch, tmp_path):
    monkeypatch.setenv('ESCROW_DB_BACKEND', 'sqlite')
    monkeypatch.setenv('ESCROW_DB_ALLOW_FALLBACK', 'false')
    monkeypatch.setenv('SQLITE_PATH', str(tmp_path / 'escrow.db'))
    return ProductionConfig()


@pytest.fixture
def sqlite_stores(sqlite_config):
    stores = create_stores(sqlite_config)
    yield stores
    stores.close()


def escrow_payload(**overrides):
    payload = {
        'productId': 'product-42',
        'productName': 'Vintage Camera',
        'buyerId': 'B',
        'buyerUsername': 'buyer',
        'sellerId': 'S',
        'sellerUsername': 'seller',
        'amount': 100000,
        'fee': 3000,
    }
    payload.update(overrides)
    return payload
