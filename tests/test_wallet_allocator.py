from dataclasses import replace

from escrow_service.config.routing import RoutingConfig, RoutingParameters
from escrow_service.models import cycle_number_at
from escrow_service.services import WalletAllocator
from escrow_service.utils.addresses import is_wallet_address


def test_empty_pool_creates_and_persists_wallet(memory_stores, routing_config):
    allocator = WalletAllocator(memory_stores.wallets, routing_config)

    wallet = allocator.get_available_wallet()

    assert wallet.balance == 0
    assert wallet.is_active
    assert wallet.id.startswith('shell_')
    assert memory_stores.wallets.get_wallet(wallet.id) == wallet


def test_reuses_wallet_below_cap(memory_stores, routing_config):
    allocator = WalletAllocator(memory_stores.wallets, routing_config)
    first = allocator.get_available_wallet()
    memory_stores.wallets.add_to_wallet_balance(first.id, 9_999_999, first.last_used_at)

    assert allocator.get_available_wallet().id == first.id
    assert len(memory_stores.wallets.list_wallets()) == 1


def test_full_wallet_rolls_to_new_one(memory_stores, routing_config):
    allocator = WalletAllocator(memory_stores.wallets, routing_config)
    first = allocator.get_available_wallet()
    memory_stores.wallets.add_to_wallet_balance(first.id, 10_000_000, first.last_used_at)

    second = allocator.get_available_wallet()

    assert second.id != first.id
    assert second.balance == 0


def test_inactive_wallet_is_never_selected(memory_stores, routing_config):
    allocator = WalletAllocator(memory_stores.wallets, routing_config)
    retired = replace(allocator.create_shell_wallet(), is_active=False)
    memory_stores.wallets.create_wallet(retired)

    wallet = allocator.get_available_wallet()

    assert wallet.id != retired.id
    assert wallet.is_active


def test_cap_follows_routing_config(memory_stores):
    routing_config = RoutingConfig(RoutingParameters(max_wallet_balance=100))
    allocator = WalletAllocator(memory_stores.wallets, routing_config)
    first = allocator.get_available_wallet()
    memory_stores.wallets.add_to_wallet_balance(first.id, 100, first.last_used_at)

    assert allocator.get_available_wallet().id != first.id


def test_create_shell_wallet_does_not_persist(memory_stores, routing_config):
    allocator = WalletAllocator(memory_stores.wallets, routing_config)

    wallet = allocator.create_shell_wallet()

    assert memory_stores.wallets.list_wallets() == []
    assert is_wallet_address(wallet.address)
    assert wallet.cycle_number == cycle_number_at(wallet.created_at, 6)
