"""Error taxonomy shared by the classifier, synchronizer and CSR validator."""

from __future__ import annotations


class NodeIdentityError(Exception):
    """Base class for every error raised by nodeidentity."""


class ValidationError(NodeIdentityError, ValueError):
    """Malformed address, IP or request input."""


class NotFoundError(NodeIdentityError):
    """The referenced node does not exist in the registry."""


class ConflictError(NodeIdentityError):
    """The registry rejected a write because the object changed underneath it."""


class TransientError(NodeIdentityError):
    """Timeout, cancellation or transport failure talking to the registry."""


class TrustDenied(NodeIdentityError):
    def __init__(self, node_name: str, reason: str) -> None:
        super().__init__(f"certificate request for node {node_name} denied: {reason}")
        self.node_name = node_name
        self.reason = reason


RETRYABLE_ERRORS = (ConflictError, TransientError)


def not_found_message(name: str) -> str:
    return f'nodes "{name}" not found'
