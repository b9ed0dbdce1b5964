"""
Store interfaces.

EscrowManager, WalletAllocator, MixingScheduler and FeeRoutingService only
ever talk to these two interfaces; the concrete backend is chosen once at
startup (see ``escrow_service.database.create_stores``).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..models import EscrowMessage, EscrowTransaction, FeeSettings, FeeTransaction, ShellWallet


class TransactionStore(ABC):
    """Escrow transactions, their message threads and fee settings history."""

    @abstractmethod
    def create_transaction(self, transaction: EscrowTransaction) -> EscrowTransaction:
        ...

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[EscrowTransaction]:
        """Return the transaction without its messages, or None."""

    @abstractmethod
    def update_transaction(self, transaction: EscrowTransaction) -> EscrowTransaction:
        """Persist status and timestamps. Addresses and parties are never rewritten."""

    @abstractmethod
    def list_transactions(self, user_id: Optional[str] = None) -> List[EscrowTransaction]:
        """Newest first; restricted to buyer or seller ``user_id`` when given."""

    @abstractmethod
    def add_message(self, message: EscrowMessage) -> EscrowMessage:
        ...

    @abstractmethod
    def list_messages(self, transaction_id: str) -> List[EscrowMessage]:
        """Oldest first."""

    @abstractmethod
    def add_fee_settings(self, settings: FeeSettings) -> FeeSettings:
        ...

    @abstractmethod
    def latest_fee_settings(self) -> Optional[FeeSettings]:
        ...

    def describe(self) -> Dict[str, Any]:
        return {'backend': type(self).__name__}


class WalletStore(ABC):
    """Shell wallets and the fee transactions routed through them."""

    @abstractmethod
    def create_wallet(self, wallet: ShellWallet) -> ShellWallet:
        ...

    @abstractmethod
    def get_wallet(self, wallet_id: str) -> Optional[ShellWallet]:
        ...

    @abstractmethod
    def list_wallets(self, active_only: bool = False,
                     balance_below: Optional[int] = None) -> List[ShellWallet]:
        """Oldest first."""

    @abstractmethod
    def add_to_wallet_balance(self, wallet_id: str, amount: int,
                              used_at: datetime) -> Optional[ShellWallet]:
        """Increment the balance in a single store operation and return the wallet."""

    @abstractmethod
    def create_fee_transaction(self, fee_transaction: FeeTransaction) -> FeeTransaction:
        ...

    @abstractmethod
    def get_fee_transaction(self, fee_transaction_id: str) -> Optional[FeeTransaction]:
        ...

    @abstractmethod
    def list_fee_transactions(self, vendor_id: Optional[str] = None,
                              statuses: Optional[Iterable[str]] = None) -> List[FeeTransaction]:
        ...

    @abstractmethod
    def complete_fee_transaction(self, fee_transaction_id: str, destination_address: str,
                                 completed_at: datetime) -> bool:
        """Move a pending fee transaction to completed.

        Returns False without writing when the transaction is missing or no
        longer pending.
        """

    def describe(self) -> Dict[str, Any]:
        return {'backend': type(self).__name__}
