"""
Domain records for escrow transactions and fee routing.

Escrow records serialize with snake_case keys (they mirror the stored rows);
fee routing records serialize with camelCase keys (they mirror the routing
API payloads).
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# Escrow statuses
ESCROW_PENDING = 'pending'
ESCROW_FUNDED = 'funded'
ESCROW_COMPLETED = 'completed'
ESCROW_DISPUTED = 'disputed'
ESCROW_CANCELLED = 'cancelled'

ESCROW_STATUSES = (ESCROW_PENDING, ESCROW_FUNDED, ESCROW_COMPLETED, ESCROW_DISPUTED, ESCROW_CANCELLED)

ESCROW_TRANSITIONS = {
    ESCROW_PENDING: frozenset({ESCROW_FUNDED, ESCROW_CANCELLED}),
    ESCROW_FUNDED: frozenset({ESCROW_COMPLETED, ESCROW_DISPUTED}),
    ESCROW_DISPUTED: frozenset({ESCROW_COMPLETED, ESCROW_CANCELLED}),
    ESCROW_COMPLETED: frozenset(),
    ESCROW_CANCELLED: frozenset(),
}

# Fee transaction statuses
FEE_PENDING = 'pending'
FEE_MIXING = 'mixing'
FEE_COMPLETED = 'completed'
FEE_DISPERSED = 'dispersed'

FEE_IN_MIXING_STATUSES = (FEE_PENDING, FEE_MIXING)
FEE_SETTLED_STATUSES = (FEE_DISPERSED, FEE_COMPLETED)

SYSTEM_AUTHOR_ID = 'system'
SYSTEM_AUTHOR_NAME = 'Escrow System'

DEFAULT_FEE_SETTINGS = {
    'empireElite': 0.0,
    'verifiedVendor': 3.0,
    'regularVendor': 7.0,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_timestamp(value) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def cycle_number_at(moment: datetime, cycle_interval_hours: int) -> int:
    """Index of the allocation cycle containing ``moment``."""
    return math.floor(moment.timestamp() / (cycle_interval_hours * 3600))


@dataclass
class Party:
    id: str
    username: str


@dataclass
class EscrowMessage:
    id: str
    transaction_id: str
    user_id: str
    username: str
    content: str
    is_system: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'user_id': self.user_id,
            'username': self.username,
            'content': self.content,
            'is_system': self.is_system,
            'created_at': isoformat(self.created_at),
        }


@dataclass
class EscrowTransaction:
    id: str
    product_id: str
    product_name: str
    buyer: Party
    seller: Party
    amount: int
    fee: int
    elite_fee: int
    buyer_address: str
    seller_address: str
    escrow_address: str
    status: str = ESCROW_PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    funded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    messages: List[EscrowMessage] = field(default_factory=list)

    def with_status(self, new_status: str, moment: datetime) -> 'EscrowTransaction':
        """Copy with ``new_status`` applied and the matching timestamp stamped."""
        changes = {'status': new_status, 'updated_at': moment}
        if new_status == ESCROW_FUNDED:
            changes['funded_at'] = moment
        elif new_status == ESCROW_COMPLETED:
            changes['completed_at'] = moment
        return replace(self, **changes)

    def to_dict(self, include_messages: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'buyer_id': self.buyer.id,
            'buyer_username': self.buyer.username,
            'seller_id': self.seller.id,
            'seller_username': self.seller.username,
            'amount': self.amount,
            'fee': self.fee,
            'empire_elite_fee': self.elite_fee,
            'buyer_address': self.buyer_address,
            'seller_address': self.seller_address,
            'escrow_address': self.escrow_address,
            'status': self.status,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
            'funded_at': isoformat(self.funded_at),
            'completed_at': isoformat(self.completed_at),
        }
        if include_messages:
            data['messages'] = [message.to_dict() for message in self.messages]
        return data


@dataclass
class FeeSettings:
    id: str
    empire_elite: float
    verified_vendor: float
    regular_vendor: float
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'empireElite': self.empire_elite,
            'verifiedVendor': self.verified_vendor,
            'regularVendor': self.regular_vendor,
            'updatedBy': self.updated_by,
            'updatedAt': isoformat(self.updated_at),
        }


@dataclass
class ShellWallet:
    id: str
    address: str
    balance: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: datetime = field(default_factory=utcnow)
    is_active: bool = True
    cycle_number: int = 0

    def accepts_allocation(self, max_wallet_balance: int) -> bool:
        return self.is_active and self.balance < max_wallet_balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'address': self.address,
            'balance': self.balance,
            'createdAt': isoformat(self.created_at),
            'lastUsedAt': isoformat(self.last_used_at),
            'isActive': self.is_active,
            'cycleNumber': self.cycle_number,
        }


@dataclass
class FeeTransaction:
    id: str
    source_transaction_id: str
    vendor_id: str
    amount: int
    shell_wallet_id: str
    mixing_rounds: int
    delay_minutes: int
    timestamp: int
    status: str = FEE_PENDING
    destination_address: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_due(self, moment: datetime) -> bool:
        return self.due_at is None or self.due_at <= moment

    def to_status_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'status': self.status,
            'amount': self.amount,
            'mixingRounds': self.mixing_rounds,
            'timestamp': self.timestamp,
            'destinationAddress': self.destination_address,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_status_dict()
        data.update({
            'sourceTransactionId': self.source_transaction_id,
            'vendorId': self.vendor_id,
            'shellWalletId': self.shell_wallet_id,
            'delayMinutes': self.delay_minutes,
            'createdAt': isoformat(self.created_at),
            'dueAt': isoformat(self.due_at),
            'completedAt': isoformat(self.completed_at),
        })
        return data
