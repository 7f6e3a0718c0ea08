"""
Custom Exception Classes for the ICO Admin CLI

This module defines the exception classes raised by the ICO administration tool.
They separate failures the operator can act on (bad configuration, a node that is
still syncing, an ICO stage in the wrong state) from failures reported by the
remote ledger itself.

Exception Categories:
- Configuration Errors: invalid or unreadable settings and contract artifacts
- Network Errors: node still synchronizing, JSON-RPC error responses
- Precondition Errors: wrong ICO state, contract not deployed, bad argument value
- Transaction Errors: reverted or otherwise failed transactions
- Usage Errors: unknown commands or missing command arguments
- Confirmation: the operator declined an irreversible action

Usage:
    Precondition errors are always raised before any transaction is submitted.
    The command dispatcher catches IcoAdminError subclasses, prints the message
    and exits with status 1.
"""


class IcoAdminError(Exception):
    """Base class for all errors raised by the ICO admin tool."""


class ConfigurationError(IcoAdminError):
    """Raised when there are configuration-related errors."""


class NetworkSyncError(IcoAdminError):
    """Raised when the connected node reports that it is still synchronizing."""


class RpcError(IcoAdminError):
    """Raised when the node answers a JSON-RPC request with an error object."""

    def __init__(self, method: str, error):
        self.method = method
        self.error = error
        if isinstance(error, dict):
            message = error.get("message", error)
        else:
            message = error
        super().__init__(f"RPC {method} failed: {message}")


class TransactionFailedError(IcoAdminError):
    """Raised if a transaction is mined with a failure status."""


class PreconditionError(IcoAdminError):
    """Raised when a client-side guard rejects an operation before any transaction is sent."""


class NotDeployedError(PreconditionError):
    """Raised when an operation needs a contract that has no deployed address."""


class InvalidStateError(PreconditionError):
    """Raised when an ICO stage is not in a state that allows the requested transition."""


class ValidationError(PreconditionError):
    """Raised when a command argument cannot be parsed or is out of range."""


class UsageError(IcoAdminError):
    """Raised for unknown commands, unknown sub-commands or missing arguments."""


class ConfirmationDeclinedError(IcoAdminError):
    """Raised when the operator does not type the expected confirmation phrase."""
