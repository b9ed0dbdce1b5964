#!/usr/bin/env python3
"""
🔀 Fee Routing Service
Routes collected platform fees through shell wallets and reports on them

Flow:
1. route_fee picks (or creates) a shell wallet under the capacity policy
2. a pending FeeTransaction is stored and the wallet balance is increased
3. the MixingScheduler completes it after the operational delay
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from ..config.routing import RoutingConfig
from ..database.stores import WalletStore
from ..errors import NotFoundError, ValidationError
from ..models import (
    FEE_IN_MIXING_STATUSES, FEE_SETTLED_STATUSES, FeeTransaction, cycle_number_at, utcnow,
)
from ..utils.addresses import generate_fee_transaction_id, now_ms, random_between
from ..utils.production_logger import LoggerFactory, log_performance
from .mixing_scheduler import MixingScheduler
from .wallet_allocator import WalletAllocator

UNKNOWN_VENDOR = 'unknown'


class FeeRoutingService:

    def __init__(self, store: WalletStore, allocator: WalletAllocator,
                 scheduler: MixingScheduler, routing_config: RoutingConfig):
        self.store = store
        self.allocator = allocator
        self.scheduler = scheduler
        self.routing_config = routing_config
        self.logger = LoggerFactory.get_routing_logger()
        self.last_cycle_time = 0

    @log_performance("route_fee")
    def route_fee(self, source_transaction_id, amount, vendor_id: Optional[str] = None) -> Dict[str, Any]:
        """Allocate ``amount`` to a shell wallet and schedule its completion."""
        if source_transaction_id is None or not str(source_transaction_id).strip():
            raise ValidationError("Missing required field: sourceTransactionId")
        if isinstance(amount, float) and amount.is_integer():
            amount = int(amount)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount must be a positive integer in minor units")

        params = self.routing_config.current
        wallet = self.allocator.get_available_wallet()

        moment = utcnow()
        fee_transaction = FeeTransaction(
            id=generate_fee_transaction_id(),
            source_transaction_id=str(source_transaction_id).strip(),
            vendor_id=str(vendor_id).strip() if vendor_id else UNKNOWN_VENDOR,
            amount=amount,
            shell_wallet_id=wallet.id,
            mixing_rounds=random_between(params.min_mixing_rounds, params.max_mixing_rounds),
            delay_minutes=random_between(params.min_delay_minutes, params.max_delay_minutes),
            timestamp=int(moment.timestamp() * 1000),
            created_at=moment,
            due_at=moment + timedelta(seconds=params.completion_delay_seconds),
        )
        fee_transaction = self.store.create_fee_transaction(fee_transaction)

        # separate write from the insert above; see WalletAllocator on the capacity race
        updated_wallet = self.store.add_to_wallet_balance(wallet.id, amount, moment)
        wallet_balance = updated_wallet.balance if updated_wallet else wallet.balance + amount

        if params.enable_automated_mixing:
            self.scheduler.schedule(fee_transaction.id, params.completion_delay_seconds)

        self.logger.log_fee_routed(fee_transaction.id, wallet.id, amount, wallet_balance)

        return {
            'transactionId': fee_transaction.id,
            'shellWalletId': wallet.id,
            'estimatedCompletionTime': fee_transaction.timestamp + fee_transaction.delay_minutes * 60 * 1000,
        }

    def get_status(self) -> Dict[str, Any]:
        """Fee totals by stage plus the number of active shell wallets."""
        total_collected = 0
        in_mixing = 0
        dispersed = 0

        for fee_transaction in self.store.list_fee_transactions():
            total_collected += fee_transaction.amount
            if fee_transaction.status in FEE_IN_MIXING_STATUSES:
                in_mixing += fee_transaction.amount
            elif fee_transaction.status in FEE_SETTLED_STATUSES:
                dispersed += fee_transaction.amount

        interval_ms = self.routing_config.current.cycle_interval_hours * 60 * 60 * 1000
        return {
            'totalFeesCollected': total_collected,
            'feesInMixing': in_mixing,
            'feesDispersed': dispersed,
            'activeShellWallets': len(self.store.list_wallets(active_only=True)),
            'lastCycleTime': self.last_cycle_time,
            'nextCycleTime': (self.last_cycle_time or now_ms()) + interval_ms,
        }

    def get_transaction_status(self, fee_transaction_id: str) -> Dict[str, Any]:
        if not fee_transaction_id:
            raise ValidationError("Missing transaction ID")
        fee_transaction = self.store.get_fee_transaction(fee_transaction_id)
        if fee_transaction is None:
            raise NotFoundError("Transaction not found")
        return fee_transaction.to_status_dict()

    def get_vendor_summary(self, vendor_id: str) -> Dict[str, Any]:
        """Totals for one vendor; all zeros when the vendor has routed nothing."""
        if not vendor_id:
            raise ValidationError("Missing vendor ID")
        fee_transactions = self.store.list_fee_transactions(vendor_id=vendor_id)
        return {
            'totalFees': sum(tx.amount for tx in fee_transactions),
            'transactionsCount': len(fee_transactions),
            'lastFeeTime': max((tx.timestamp for tx in fee_transactions), default=0),
        }

    def execute_cycle(self) -> Dict[str, Any]:
        """Complete every pending fee transaction whose due time has passed."""
        moment = utcnow()
        completed = self.scheduler.recover_pending(moment, reschedule=False)
        self.last_cycle_time = int(moment.timestamp() * 1000)
        cycle_number = cycle_number_at(moment, self.routing_config.current.cycle_interval_hours)

        self.logger.info("Routing cycle executed", completed=completed, cycle_number=cycle_number)
        return {'completed': completed, 'cycleNumber': cycle_number}

    def get_config(self) -> Dict[str, Any]:
        return self.routing_config.to_dict()

    def update_config(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        parameters = self.routing_config.update(changes)
        self.logger.info("Routing config updated", changes=changes)
        return parameters.to_dict()
