"""Escrow and fee routing services, wired over a StoreBundle."""

from typing import NamedTuple

from ..config.routing import RoutingConfig
from .escrow_manager import EscrowManager
from .fee_routing import FeeRoutingService
from .mixing_scheduler import MixingScheduler, schedule_completion_job
from .wallet_allocator import WalletAllocator

__all__ = [
    'EscrowManager', 'FeeRoutingService', 'MixingScheduler', 'WalletAllocator',
    'Services', 'build_services',
]


class Services(NamedTuple):
    escrow: EscrowManager
    allocator: WalletAllocator
    scheduler: MixingScheduler
    fee_routing: FeeRoutingService
    routing_config: RoutingConfig


def build_services(stores, routing_config: RoutingConfig, timer_factory=schedule_completion_job) -> Services:
    allocator = WalletAllocator(stores.wallets, routing_config)
    scheduler = MixingScheduler(stores.wallets, timer_factory=timer_factory)
    fee_routing = FeeRoutingService(stores.wallets, allocator, scheduler, routing_config)
    return Services(
        escrow=EscrowManager(stores.transactions),
        allocator=allocator,
        scheduler=scheduler,
        fee_routing=fee_routing,
        routing_config=routing_config,
    )
