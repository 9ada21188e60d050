"""
Clawd Vote Worker - autonomous governance voting for custodial agent wallets.

Components (in handoff order):
1. EligibilityFilter - Active, autoVote, wallet provisioned
2. VoteDecisionEngine - Reasoning recommendation + confidence threshold
3. RateLimiter - Per-agent sliding window of signing slots
4. TransactionSigner - Rate limit then one custodial wallet call
5. ObservabilityAgent - Log every cycle and vote

The CycleExecutor runs one pass over agents x proposals; the CycleScheduler
repeats it on an interval, one cycle at a time.
"""

from ..schemas import (
    Agent,
    AgentConfig,
    CycleSummary,
    Proposal,
    VoteAction,
    VoteDecision,
    WorkerState,
)

__all__ = [
    "Agent",
    "AgentConfig",
    "CycleSummary",
    "Proposal",
    "VoteAction",
    "VoteDecision",
    "WorkerState",
]
