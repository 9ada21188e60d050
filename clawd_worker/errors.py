"""
Error taxonomy for the vote execution pipeline.

Pair-level errors (DecisionFailed, RateLimitExceeded, SigningFailed,
InvalidTransaction, TransactionBuildFailed) are folded into the cycle
summary. Only EnumerationFailed escapes a cycle.
"""
from typing import Optional


class WorkerError(Exception):
    """Base class for all worker errors."""

    kind = "worker_error"


class CycleInProgress(WorkerError):
    """Raised when a cycle is requested while another one is running."""

    kind = "cycle_in_progress"

    def __init__(self):
        super().__init__("Cycle already in progress")


class DecisionFailed(WorkerError):
    """Reasoning collaborator unreachable or returned an invalid payload."""

    kind = "decision_failed"


class RateLimitExceeded(WorkerError):
    """Per-agent transaction budget exhausted for the current window."""

    kind = "rate_limited"

    def __init__(self, agent_id: str, limit: int, retry_after_seconds: float):
        self.agent_id = agent_id
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded for agent {agent_id}: {limit} transactions per window. "
            f"Reset in {retry_after_seconds:.0f}s."
        )


class SigningFailed(WorkerError):
    """Custodial wallet service rejected or errored on submission."""

    kind = "signing_failed"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        self.upstream_message = message
        prefix = f"{status_code} " if status_code is not None else ""
        super().__init__(f"Wallet signAndSendTransaction failed: {prefix}{message}".rstrip())


class InvalidTransaction(WorkerError):
    """Serialized transaction failed the sanity bound. Caller bug."""

    kind = "invalid_transaction"


class TransactionBuildFailed(WorkerError):
    """Vote transaction could not be built by the governance API."""

    kind = "transaction_build_failed"


class EnumerationFailed(WorkerError):
    """Agents or proposals could not be listed at all. Aborts the cycle."""

    kind = "enumeration_failed"
