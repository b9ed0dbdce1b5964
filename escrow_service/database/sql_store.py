"""
SQL-backed stores over ProductionDatabase (SQLite or PostgreSQL).
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..models import (
    FEE_COMPLETED, FEE_PENDING,
    EscrowMessage, EscrowTransaction, FeeSettings, FeeTransaction, Party, ShellWallet,
    isoformat, parse_timestamp,
)
from .production_db import ProductionDatabase
from .stores import TransactionStore, WalletStore


def _transaction_from_row(row: Dict[str, Any]) -> EscrowTransaction:
    return EscrowTransaction(
        id=row['id'],
        product_id=row['product_id'],
        product_name=row['product_name'],
        buyer=Party(id=row['buyer_id'], username=row['buyer_username']),
        seller=Party(id=row['seller_id'], username=row['seller_username']),
        amount=int(row['amount']),
        fee=int(row['fee']),
        elite_fee=int(row['empire_elite_fee'] or 0),
        buyer_address=row['buyer_address'],
        seller_address=row['seller_address'],
        escrow_address=row['escrow_address'],
        status=row['status'],
        created_at=parse_timestamp(row['created_at']),
        updated_at=parse_timestamp(row['updated_at']),
        funded_at=parse_timestamp(row['funded_at']),
        completed_at=parse_timestamp(row['completed_at']),
    )


def _message_from_row(row: Dict[str, Any]) -> EscrowMessage:
    return EscrowMessage(
        id=row['id'],
        transaction_id=row['transaction_id'],
        user_id=row['user_id'],
        username=row['username'],
        content=row['content'],
        is_system=bool(row['is_system']),
        created_at=parse_timestamp(row['created_at']),
    )


def _settings_from_row(row: Dict[str, Any]) -> FeeSettings:
    return FeeSettings(
        id=row['id'],
        empire_elite=float(row['empire_elite_fee']),
        verified_vendor=float(row['verified_vendor_fee']),
        regular_vendor=float(row['regular_vendor_fee']),
        updated_by=row['updated_by'],
        updated_at=parse_timestamp(row['updated_at']),
    )


def _wallet_from_row(row: Dict[str, Any]) -> ShellWallet:
    return ShellWallet(
        id=row['id'],
        address=row['address'],
        balance=int(row['balance']),
        created_at=parse_timestamp(row['created_at']),
        last_used_at=parse_timestamp(row['last_used_at']),
        is_active=bool(row['is_active']),
        cycle_number=int(row['cycle_number']),
    )


def _fee_transaction_from_row(row: Dict[str, Any]) -> FeeTransaction:
    return FeeTransaction(
        id=row['id'],
        source_transaction_id=row['source_transaction_id'],
        vendor_id=row['vendor_id'],
        amount=int(row['amount']),
        shell_wallet_id=row['shell_wallet_id'],
        mixing_rounds=int(row['mixing_rounds']),
        delay_minutes=int(row['delay_minutes']),
        timestamp=int(row['timestamp_ms']),
        status=row['status'],
        destination_address=row['destination_address'],
        created_at=parse_timestamp(row['created_at']),
        due_at=parse_timestamp(row['due_at']),
        completed_at=parse_timestamp(row['completed_at']),
    )


class SqlTransactionStore(TransactionStore):

    def __init__(self, db: ProductionDatabase):
        self.db = db

    def create_transaction(self, transaction):
        self.db.execute_query(
            """INSERT INTO escrow_transactions (
                   id, product_id, product_name, buyer_id, buyer_username,
                   seller_id, seller_username, amount, fee, empire_elite_fee,
                   buyer_address, seller_address, escrow_address, status,
                   funded_at, completed_at, created_at, updated_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (transaction.id, transaction.product_id, transaction.product_name,
             transaction.buyer.id, transaction.buyer.username,
             transaction.seller.id, transaction.seller.username,
             transaction.amount, transaction.fee, transaction.elite_fee,
             transaction.buyer_address, transaction.seller_address, transaction.escrow_address,
             transaction.status, isoformat(transaction.funded_at), isoformat(transaction.completed_at),
             isoformat(transaction.created_at), isoformat(transaction.updated_at))
        )
        return transaction

    def get_transaction(self, transaction_id):
        row = self.db.execute_query(
            "SELECT * FROM escrow_transactions WHERE id = ?", (transaction_id,), fetch_one=True
        )
        return _transaction_from_row(row) if row else None

    def update_transaction(self, transaction):
        self.db.execute_query(
            """UPDATE escrow_transactions
               SET status = ?, updated_at = ?, funded_at = ?, completed_at = ?
               WHERE id = ?""",
            (transaction.status, isoformat(transaction.updated_at),
             isoformat(transaction.funded_at), isoformat(transaction.completed_at),
             transaction.id)
        )
        return self.get_transaction(transaction.id)

    def list_transactions(self, user_id=None):
        query = "SELECT * FROM escrow_transactions"
        params: tuple = ()
        if user_id is not None:
            query += " WHERE buyer_id = ? OR seller_id = ?"
            params = (user_id, user_id)
        query += " ORDER BY created_at DESC"
        return [_transaction_from_row(row) for row in self.db.execute_query(query, params, fetch_all=True)]

    def add_message(self, message):
        self.db.execute_query(
            """INSERT INTO escrow_messages (id, transaction_id, user_id, username, content, is_system, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (message.id, message.transaction_id, message.user_id, message.username,
             message.content, message.is_system, isoformat(message.created_at))
        )
        return message

    def list_messages(self, transaction_id):
        rows = self.db.execute_query(
            "SELECT * FROM escrow_messages WHERE transaction_id = ? ORDER BY created_at ASC",
            (transaction_id,), fetch_all=True
        )
        return [_message_from_row(row) for row in rows]

    def add_fee_settings(self, settings):
        self.db.execute_query(
            """INSERT INTO fee_settings (id, empire_elite_fee, verified_vendor_fee, regular_vendor_fee,
                                         updated_at, updated_by)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (settings.id, settings.empire_elite, settings.verified_vendor, settings.regular_vendor,
             isoformat(settings.updated_at), settings.updated_by)
        )
        return settings

    def latest_fee_settings(self):
        row = self.db.execute_query(
            "SELECT * FROM fee_settings ORDER BY updated_at DESC LIMIT 1", fetch_one=True
        )
        return _settings_from_row(row) if row else None

    def describe(self):
        status = self.db.get_health_status()
        status.update({'backend': self.db.dialect, 'durable': True})
        return status


class SqlWalletStore(WalletStore):

    def __init__(self, db: ProductionDatabase):
        self.db = db

    def create_wallet(self, wallet):
        self.db.execute_query(
            """INSERT INTO shell_wallets (id, address, balance, created_at, last_used_at, is_active, cycle_number)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (wallet.id, wallet.address, wallet.balance, isoformat(wallet.created_at),
             isoformat(wallet.last_used_at), wallet.is_active, wallet.cycle_number)
        )
        return wallet

    def get_wallet(self, wallet_id):
        row = self.db.execute_query(
            "SELECT * FROM shell_wallets WHERE id = ?", (wallet_id,), fetch_one=True
        )
        return _wallet_from_row(row) if row else None

    def list_wallets(self, active_only=False, balance_below=None):
        clauses = []
        params = []
        if active_only:
            clauses.append("is_active = ?")
            params.append(True)
        if balance_below is not None:
            clauses.append("balance < ?")
            params.append(balance_below)

        query = "SELECT * FROM shell_wallets"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC"
        return [_wallet_from_row(row) for row in self.db.execute_query(query, tuple(params), fetch_all=True)]

    def add_to_wallet_balance(self, wallet_id: str, amount: int, used_at: datetime) -> Optional[ShellWallet]:
        updated = self.db.execute_query(
            "UPDATE shell_wallets SET balance = balance + ?, last_used_at = ? WHERE id = ?",
            (amount, isoformat(used_at), wallet_id)
        )
        return self.get_wallet(wallet_id) if updated else None

    def create_fee_transaction(self, fee_transaction):
        self.db.execute_query(
            """INSERT INTO fee_transactions (
                   id, source_transaction_id, vendor_id, amount, shell_wallet_id, status,
                   mixing_rounds, delay_minutes, destination_address, timestamp_ms,
                   created_at, due_at, completed_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (fee_transaction.id, fee_transaction.source_transaction_id, fee_transaction.vendor_id,
             fee_transaction.amount, fee_transaction.shell_wallet_id, fee_transaction.status,
             fee_transaction.mixing_rounds, fee_transaction.delay_minutes,
             fee_transaction.destination_address, fee_transaction.timestamp,
             isoformat(fee_transaction.created_at), isoformat(fee_transaction.due_at),
             isoformat(fee_transaction.completed_at))
        )
        return fee_transaction

    def get_fee_transaction(self, fee_transaction_id):
        row = self.db.execute_query(
            "SELECT * FROM fee_transactions WHERE id = ?", (fee_transaction_id,), fetch_one=True
        )
        return _fee_transaction_from_row(row) if row else None

    def list_fee_transactions(self, vendor_id: Optional[str] = None,
                              statuses: Optional[Iterable[str]] = None) -> List[FeeTransaction]:
        clauses = []
        params = []
        if vendor_id is not None:
            clauses.append("vendor_id = ?")
            params.append(vendor_id)
        if statuses is not None:
            statuses = list(statuses)
            if not statuses:
                return []
            clauses.append("status IN (%s)" % ", ".join("?" for _ in statuses))
            params.extend(statuses)

        query = "SELECT * FROM fee_transactions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY timestamp_ms ASC"
        return [_fee_transaction_from_row(row)
                for row in self.db.execute_query(query, tuple(params), fetch_all=True)]

    def complete_fee_transaction(self, fee_transaction_id, destination_address, completed_at):
        updated = self.db.execute_query(
            """UPDATE fee_transactions
               SET status = ?, destination_address = ?, completed_at = ?
               WHERE id = ? AND status = ?""",
            (FEE_COMPLETED, destination_address, isoformat(completed_at), fee_transaction_id, FEE_PENDING)
        )
        return updated == 1

    def describe(self):
        status = self.db.get_health_status()
        status.update({'backend': self.db.dialect, 'durable': True})
        return status
