#!/usr/bin/env python3
"""
Error taxonomy for the escrow and fee routing service.
Every error carries the HTTP status the API boundary translates it to.
"""


class EscrowServiceError(Exception):
    """Base class for all service errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EscrowServiceError):
    """Missing or invalid input field."""
    status_code = 400


class NotFoundError(EscrowServiceError):
    """Unknown transaction, wallet or fee transaction id."""
    status_code = 404


class InternalError(EscrowServiceError):
    """Unexpected failure."""
    status_code = 500


class BackendUnavailableError(InternalError):
    """No durable store could be opened and fallback is not allowed."""
    pass


class DatabaseError(InternalError):
    """Custom database exception."""
    pass


class ConnectionPoolError(DatabaseError):
    """Connection pool related errors."""
    pass
