"""
Error taxonomy for launchpad operations.

Local precondition and encoding errors are raised before any network call.
Submission and transport errors carry the transaction signature when one is
known so the caller can decide whether to retry.
"""

from typing import Optional


class LaunchpadError(Exception):
    """Base exception for launchpad operation errors."""

    error_kind = "LaunchpadError"

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.signature = signature


class NotConnected(LaunchpadError):
    """No signing agent is connected."""
    error_kind = "NotConnected"


class PreconditionMissing(LaunchpadError):
    """An action needs a mint, an account or an input that is not there yet."""
    error_kind = "PreconditionMissing"


class EncodingError(LaunchpadError):
    """A value cannot be represented in the instruction or account layout."""
    error_kind = "EncodingError"


class SubmissionRejected(LaunchpadError):
    """The cluster or the receiving program rejected the transaction."""
    error_kind = "SubmissionRejected"


class TransportFailure(LaunchpadError):
    """The cluster could not be reached or did not answer in time."""
    error_kind = "TransportFailure"
