import threading

import pytest

from escrow_service.config.routing import RoutingConfig, RoutingParameters
from escrow_service.database.memory_store import InMemoryWalletStore
from escrow_service.errors import NotFoundError, ValidationError
from escrow_service.services import FeeRoutingService, MixingScheduler, WalletAllocator
from escrow_service.utils.addresses import is_destination_address


@pytest.fixture
def fee_routing(services):
    return services.fee_routing


def test_first_routing_creates_wallet_and_counts_in_mixing(fee_routing, memory_stores, timers):
    result = fee_routing.route_fee('escrow-1', 5000, 'vendor-1')

    wallets = memory_stores.wallets.list_wallets()
    assert len(wallets) == 1
    assert wallets[0].id == result['shellWalletId']
    assert wallets[0].balance == 5000

    status = fee_routing.get_status()
    assert status['totalFeesCollected'] == 5000
    assert status['feesInMixing'] == 5000
    assert status['feesDispersed'] == 0
    assert status['activeShellWallets'] == 1

    timers.fire_all()

    status = fee_routing.get_status()
    assert status['feesInMixing'] == 0
    assert status['feesDispersed'] == 5000

    tx_status = fee_routing.get_transaction_status(result['transactionId'])
    assert tx_status['status'] == 'completed'
    assert is_destination_address(tx_status['destinationAddress'])


def test_routed_fee_record(fee_routing, memory_stores):
    result = fee_routing.route_fee('escrow-1', 5000, 'vendor-1')

    fee_transaction = memory_stores.wallets.get_fee_transaction(result['transactionId'])
    assert fee_transaction.id.startswith('tx_')
    assert fee_transaction.status == 'pending'
    assert fee_transaction.vendor_id == 'vendor-1'
    assert 3 <= fee_transaction.mixing_rounds <= 7
    assert 30 <= fee_transaction.delay_minutes <= 180
    assert result['estimatedCompletionTime'] == (
        fee_transaction.timestamp + fee_transaction.delay_minutes * 60 * 1000
    )


def test_completion_is_scheduled_with_operational_delay(fee_routing, timers):
    fee_routing.route_fee('escrow-1', 5000)

    assert timers.delays == [60]


def test_vendor_defaults_to_unknown(fee_routing, memory_stores):
    result = fee_routing.route_fee('escrow-1', 100)

    assert memory_stores.wallets.get_fee_transaction(result['transactionId']).vendor_id == 'unknown'


def test_integral_float_amount_is_accepted(fee_routing):
    result = fee_routing.route_fee('escrow-1', 250.0)

    assert fee_routing.get_transaction_status(result['transactionId'])['amount'] == 250


@pytest.mark.parametrize('source, amount', [
    (None, 100),
    ('', 100),
    ('escrow-1', 0),
    ('escrow-1', -10),
    ('escrow-1', 1.5),
    ('escrow-1', '100'),
    ('escrow-1', None),
])
def test_route_fee_validation(fee_routing, memory_stores, source, amount):
    with pytest.raises(ValidationError):
        fee_routing.route_fee(source, amount)

    assert memory_stores.wallets.list_fee_transactions() == []


def test_full_wallet_rolls_over(memory_stores, timers):
    routing_config = RoutingConfig(RoutingParameters(max_wallet_balance=10_000))
    allocator = WalletAllocator(memory_stores.wallets, routing_config)
    scheduler = MixingScheduler(memory_stores.wallets, timer_factory=timers)
    fee_routing = FeeRoutingService(memory_stores.wallets, allocator, scheduler, routing_config)

    first = fee_routing.route_fee('escrow-1', 10_000)
    second = fee_routing.route_fee('escrow-2', 10)

    assert first['shellWalletId'] != second['shellWalletId']
    assert fee_routing.get_status()['activeShellWallets'] == 2


def test_transaction_status_errors(fee_routing):
    with pytest.raises(ValidationError):
        fee_routing.get_transaction_status('')

    with pytest.raises(NotFoundError) as excinfo:
        fee_routing.get_transaction_status('tx_missing')
    assert excinfo.value.message == 'Transaction not found'


def test_vendor_summary(fee_routing):
    assert fee_routing.get_vendor_summary('V-unknown') == {
        'totalFees': 0, 'transactionsCount': 0, 'lastFeeTime': 0,
    }

    fee_routing.route_fee('escrow-1', 100, 'vendor-1')
    last = fee_routing.route_fee('escrow-2', 250, 'vendor-1')
    fee_routing.route_fee('escrow-3', 999, 'vendor-2')

    summary = fee_routing.get_vendor_summary('vendor-1')
    assert summary['totalFees'] == 350
    assert summary['transactionsCount'] == 2
    assert summary['lastFeeTime'] == fee_routing.get_transaction_status(last['transactionId'])['timestamp']

    with pytest.raises(ValidationError):
        fee_routing.get_vendor_summary('')


def test_disabled_automated_mixing_waits_for_cycle(fee_routing, timers):
    fee_routing.update_config({'enableAutomatedMixing': False, 'completionDelaySeconds': 0})

    result = fee_routing.route_fee('escrow-1', 5000)

    assert timers.pending == []
    assert fee_routing.get_transaction_status(result['transactionId'])['status'] == 'pending'

    cycle = fee_routing.execute_cycle()

    assert cycle['completed'] == 1
    assert fee_routing.get_transaction_status(result['transactionId'])['status'] == 'completed'


def test_execute_cycle_records_cycle_time(fee_routing):
    assert fee_routing.get_status()['lastCycleTime'] == 0

    cycle = fee_routing.execute_cycle()

    status = fee_routing.get_status()
    assert cycle['completed'] == 0
    assert isinstance(cycle['cycleNumber'], int)
    assert status['lastCycleTime'] > 0
    assert status['nextCycleTime'] == status['lastCycleTime'] + 6 * 60 * 60 * 1000


def test_execute_cycle_leaves_not_yet_due(fee_routing, timers):
    result = fee_routing.route_fee('escrow-1', 5000)

    assert fee_routing.execute_cycle()['completed'] == 0
    assert fee_routing.get_transaction_status(result['transactionId'])['status'] == 'pending'
    assert len(timers.pending) == 1


def test_config_update_is_visible_to_next_routing(fee_routing, memory_stores):
    config = fee_routing.update_config({'minMixingRounds': 5, 'maxMixingRounds': 5})

    assert config['minMixingRounds'] == 5
    assert fee_routing.get_config()['maxMixingRounds'] == 5

    result = fee_routing.route_fee('escrow-1', 100)
    assert memory_stores.wallets.get_fee_transaction(result['transactionId']).mixing_rounds == 5


def test_invalid_config_update_keeps_previous(fee_routing):
    before = fee_routing.get_config()

    with pytest.raises(ValidationError):
        fee_routing.update_config({'minMixingRounds': 9, 'maxMixingRounds': 2})

    assert fee_routing.get_config() == before


class BarrierAllocator(WalletAllocator):
    """Holds every selection until both callers have picked a wallet."""

    def __init__(self, store, routing_config, barrier):
        super().__init__(store, routing_config)
        self.barrier = barrier

    def get_available_wallet(self):
        wallet = super().get_available_wallet()
        self.barrier.wait(timeout=5)
        return wallet


def test_concurrent_routing_can_overshoot_cap_once(timers):
    store = InMemoryWalletStore()
    routing_config = RoutingConfig(RoutingParameters(max_wallet_balance=1_000))
    plain_allocator = WalletAllocator(store, routing_config)
    wallet = plain_allocator.get_available_wallet()
    store.add_to_wallet_balance(wallet.id, 999, wallet.last_used_at)

    allocator = BarrierAllocator(store, routing_config, threading.Barrier(2))
    scheduler = MixingScheduler(store, timer_factory=timers)
    fee_routing = FeeRoutingService(store, allocator, scheduler, routing_config)

    results = []
    errors = []

    def route(source):
        try:
            results.append(fee_routing.route_fee(source, 10))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=route, args=(f'escrow-{i}',)) for i in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert {result['shellWalletId'] for result in results} == {wallet.id}
    assert store.get_wallet(wallet.id).balance == 1_019

    follow_up = FeeRoutingService(store, plain_allocator, scheduler, routing_config).route_fee('escrow-3', 10)
    assert follow_up['shellWalletId'] != wallet.id
