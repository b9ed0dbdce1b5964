"""Escrow transactions and fee routing through shell wallets."""

__version__ = "1.0.0"
