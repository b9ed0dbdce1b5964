"""
In-process stores used when no durable backend is configured.

Records live in dicts keyed by their generated ids. Callers always receive
copies, so mutating a returned record never changes stored state.
"""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..models import (
    FEE_COMPLETED, FEE_PENDING,
    EscrowMessage, EscrowTransaction, FeeSettings, FeeTransaction, ShellWallet,
)
from .stores import TransactionStore, WalletStore


class InMemoryTransactionStore(TransactionStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._transactions: Dict[str, EscrowTransaction] = {}
        self._messages: Dict[str, List[EscrowMessage]] = {}
        self._fee_settings: List[FeeSettings] = []

    def create_transaction(self, transaction):
        with self._lock:
            self._transactions[transaction.id] = replace(transaction, messages=[])
            self._messages.setdefault(transaction.id, [])
        return replace(transaction, messages=[])

    def get_transaction(self, transaction_id):
        with self._lock:
            stored = self._transactions.get(transaction_id)
            return replace(stored) if stored else None

    def update_transaction(self, transaction):
        with self._lock:
            stored = self._transactions[transaction.id]
            stored = replace(stored,
                             status=transaction.status,
                             updated_at=transaction.updated_at,
                             funded_at=transaction.funded_at,
                             completed_at=transaction.completed_at)
            self._transactions[transaction.id] = stored
            return replace(stored)

    def list_transactions(self, user_id=None):
        with self._lock:
            transactions = [
                replace(tx) for tx in self._transactions.values()
                if user_id is None or user_id in (tx.buyer.id, tx.seller.id)
            ]
        # dict order is insertion order, so reversing keeps creation ties stable
        return sorted(reversed(transactions), key=lambda tx: tx.created_at, reverse=True)

    def add_message(self, message):
        with self._lock:
            self._messages.setdefault(message.transaction_id, []).append(replace(message))
        return replace(message)

    def list_messages(self, transaction_id):
        with self._lock:
            return [replace(message) for message in self._messages.get(transaction_id, [])]

    def add_fee_settings(self, settings):
        with self._lock:
            self._fee_settings.append(replace(settings))
        return replace(settings)

    def latest_fee_settings(self):
        with self._lock:
            return replace(self._fee_settings[-1]) if self._fee_settings else None

    def describe(self):
        with self._lock:
            return {
                'backend': 'memory',
                'durable': False,
                'transactions': len(self._transactions),
            }


class InMemoryWalletStore(WalletStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._wallets: Dict[str, ShellWallet] = {}
        self._fee_transactions: Dict[str, FeeTransaction] = {}

    def create_wallet(self, wallet):
        with self._lock:
            self._wallets[wallet.id] = replace(wallet)
        return replace(wallet)

    def get_wallet(self, wallet_id):
        with self._lock:
            stored = self._wallets.get(wallet_id)
            return replace(stored) if stored else None

    def list_wallets(self, active_only=False, balance_below=None):
        with self._lock:
            return [
                replace(wallet) for wallet in self._wallets.values()
                if (not active_only or wallet.is_active)
                and (balance_below is None or wallet.balance < balance_below)
            ]

    def add_to_wallet_balance(self, wallet_id: str, amount: int, used_at: datetime) -> Optional[ShellWallet]:
        with self._lock:
            stored = self._wallets.get(wallet_id)
            if stored is None:
                return None
            stored = replace(stored, balance=stored.balance + amount, last_used_at=used_at)
            self._wallets[wallet_id] = stored
            return replace(stored)

    def create_fee_transaction(self, fee_transaction):
        with self._lock:
            self._fee_transactions[fee_transaction.id] = replace(fee_transaction)
        return replace(fee_transaction)

    def get_fee_transaction(self, fee_transaction_id):
        with self._lock:
            stored = self._fee_transactions.get(fee_transaction_id)
            return replace(stored) if stored else None

    def list_fee_transactions(self, vendor_id: Optional[str] = None,
                              statuses: Optional[Iterable[str]] = None) -> List[FeeTransaction]:
        statuses = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                replace(tx) for tx in self._fee_transactions.values()
                if (vendor_id is None or tx.vendor_id == vendor_id)
                and (statuses is None or tx.status in statuses)
            ]

    def complete_fee_transaction(self, fee_transaction_id, destination_address, completed_at):
        with self._lock:
            stored = self._fee_transactions.get(fee_transaction_id)
            if stored is None or stored.status != FEE_PENDING:
                return False
            self._fee_transactions[fee_transaction_id] = replace(
                stored,
                status=FEE_COMPLETED,
                destination_address=destination_address,
                completed_at=completed_at,
            )
            return True

    def describe(self):
        with self._lock:
            return {
                'backend': 'memory',
                'durable': False,
                'wallets': len(self._wallets),
                'fee_transactions': len(self._fee_transactions),
            }
