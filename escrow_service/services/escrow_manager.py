#!/usr/bin/env python3
"""
💰 Escrow Transaction Manager
Creates escrow transactions, drives their status machine and keeps the
per-transaction message thread.

Status machine:
    pending  -> funded | cancelled
    funded   -> completed | disputed
    disputed -> completed | cancelled
completed and cancelled are terminal.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..database.stores import TransactionStore
from ..errors import NotFoundError, ValidationError
from ..models import (
    DEFAULT_FEE_SETTINGS, ESCROW_STATUSES, ESCROW_TRANSITIONS, SYSTEM_AUTHOR_ID, SYSTEM_AUTHOR_NAME,
    EscrowMessage, EscrowTransaction, FeeSettings, Party, utcnow,
)
from ..utils.addresses import (
    generate_distinct_addresses, generate_escrow_id, generate_message_id, generate_settings_id, now_ms,
)
from ..utils.production_logger import LoggerFactory


def _require_text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required field: {key}")
    return str(value).strip()


def _optional_text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _integer(data: Dict[str, Any], key: str, default: Optional[int] = None, minimum: int = 0) -> int:
    value = data.get(key, default)
    if value is None:
        raise ValidationError(f"Missing required field: {key}")
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        else:
            raise ValidationError(f"{key} must be an integer amount in minor units")
    if value < minimum:
        raise ValidationError(f"{key} must be at least {minimum}")
    return value


def _percentage(fees: Dict[str, Any], key: str) -> float:
    value = fees.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"fees.{key} must be a number")
    if not 0 <= value <= 100:
        raise ValidationError(f"fees.{key} must be between 0 and 100")
    return float(value)


class EscrowManager:
    """Escrow transactions and their message threads."""

    def __init__(self, store: TransactionStore):
        self.store = store
        self.logger = LoggerFactory.get_escrow_logger()

    def create(self, data: Dict[str, Any]) -> EscrowTransaction:
        """Create a pending escrow transaction with three fresh addresses."""
        if not isinstance(data, dict):
            raise ValidationError("Request body must be an object")

        buyer_id = _require_text(data, 'buyerId')
        seller_id = _require_text(data, 'sellerId')
        product_name = _require_text(data, 'productName')
        amount = _integer(data, 'amount', minimum=1)
        fee = _integer(data, 'fee', default=0)
        elite_fee = _integer(data, 'empireEliteFee', default=0)

        if buyer_id == seller_id:
            raise ValidationError("Buyer and seller must be different users")

        buyer_address, seller_address, escrow_address = generate_distinct_addresses(3)
        moment = utcnow()

        transaction = EscrowTransaction(
            id=generate_escrow_id(),
            product_id=_optional_text(data, 'productId') or f"product-{now_ms()}",
            product_name=product_name,
            buyer=Party(buyer_id, _optional_text(data, 'buyerUsername') or ''),
            seller=Party(seller_id, _optional_text(data, 'sellerUsername') or ''),
            amount=amount,
            fee=fee,
            elite_fee=elite_fee,
            buyer_address=buyer_address,
            seller_address=seller_address,
            escrow_address=escrow_address,
            created_at=moment,
            updated_at=moment,
        )
        transaction = self.store.create_transaction(transaction)

        system_message = self._append_system_message(
            transaction.id,
            f"Escrow transaction created for {product_name}. "
            f"Buyer must fund escrow address to proceed."
        )

        self.logger.log_escrow_created(transaction.id, buyer_id, seller_id, amount)
        return replace(transaction, messages=[system_message])

    def update_status(self, transaction_id: str, new_status: str) -> EscrowTransaction:
        """Move a transaction along an allowed edge of the status machine."""
        if not transaction_id:
            raise ValidationError("Missing required field: transactionId")
        if new_status not in ESCROW_STATUSES:
            raise ValidationError(f"Unknown escrow status: {new_status}")

        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Escrow transaction {transaction_id} not found")

        if new_status not in ESCROW_TRANSITIONS[transaction.status]:
            raise ValidationError(
                f"Cannot move escrow transaction from {transaction.status} to {new_status}"
            )

        old_status = transaction.status
        updated = self.store.update_transaction(transaction.with_status(new_status, utcnow()))
        self._append_system_message(transaction_id, f"Escrow status changed from {old_status} to {new_status}.")

        self.logger.log_escrow_status_changed(transaction_id, old_status, new_status)
        return replace(updated, messages=self.store.list_messages(transaction_id))

    def add_message(self, transaction_id: str, user_id, username: Optional[str], content) -> EscrowMessage:
        """Append a user message to the transaction's thread."""
        if not transaction_id:
            raise ValidationError("Missing required field: transactionId")
        if user_id is None or not str(user_id).strip():
            raise ValidationError("Missing required field: userId")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content cannot be empty")
        if str(user_id).strip() == SYSTEM_AUTHOR_ID:
            raise ValidationError("userId is reserved")
        if username is not None and not isinstance(username, str):
            raise ValidationError("username must be a string")

        if self.store.get_transaction(transaction_id) is None:
            raise NotFoundError(f"Escrow transaction {transaction_id} not found")

        message = EscrowMessage(
            id=generate_message_id(),
            transaction_id=transaction_id,
            user_id=str(user_id).strip(),
            username=(username or '').strip(),
            content=content.strip(),
            is_system=False,
        )
        return self.store.add_message(message)

    def get_transaction(self, transaction_id: str) -> EscrowTransaction:
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Escrow transaction {transaction_id} not found")
        return replace(transaction, messages=self.store.list_messages(transaction_id))

    def get_transactions(self, user_id: Optional[str] = None) -> List[EscrowTransaction]:
        """Transactions where ``user_id`` is buyer or seller (all when None), with messages."""
        user_id = str(user_id).strip() if user_id is not None and str(user_id).strip() else None
        return [
            replace(transaction, messages=self.store.list_messages(transaction.id))
            for transaction in self.store.list_transactions(user_id)
        ]

    def get_fee_settings(self) -> Dict[str, Any]:
        """Latest fee percentages, or the platform defaults when none were saved."""
        settings = self.store.latest_fee_settings()
        if settings is None:
            return dict(DEFAULT_FEE_SETTINGS)
        return settings.to_dict()

    def update_fee_settings(self, fees: Dict[str, Any], user_id=None) -> FeeSettings:
        if not isinstance(fees, dict):
            raise ValidationError("Missing required field: fees")

        settings = FeeSettings(
            id=generate_settings_id(),
            empire_elite=_percentage(fees, 'empireElite'),
            verified_vendor=_percentage(fees, 'verifiedVendor'),
            regular_vendor=_percentage(fees, 'regularVendor'),
            updated_by=str(user_id) if user_id is not None else None,
        )
        settings = self.store.add_fee_settings(settings)
        self.logger.info("Fee settings updated", settings_id=settings.id, updated_by=settings.updated_by)
        return settings

    def _append_system_message(self, transaction_id: str, content: str) -> EscrowMessage:
        return self.store.add_message(EscrowMessage(
            id=generate_message_id(),
            transaction_id=transaction_id,
            user_id=SYSTEM_AUTHOR_ID,
            username=SYSTEM_AUTHOR_NAME,
            content=content,
            is_system=True,
        ))
