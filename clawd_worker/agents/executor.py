"""
CycleExecutor - one pass over eligible agents x open proposals.

Per pair (strict order):
  ledger lookup -> VoteDecisionEngine -> [dry run stops here] -> ledger analysis
  -> build transaction -> TransactionSigner -> ledger vote

Pair failures are isolated and folded into the CycleSummary. Only a failure to
enumerate agents or proposals aborts the cycle (EnumerationFailed).
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from .decision import VoteDecisionEngine
from .eligibility import is_eligible
from .observability import ObservabilityAgent
from .signer import TransactionSigner
from ..errors import (
    DecisionFailed,
    EnumerationFailed,
    InvalidTransaction,
    RateLimitExceeded,
    SigningFailed,
    TransactionBuildFailed,
)
from ..schemas import (
    Agent,
    CycleFailure,
    CycleSummary,
    GovernanceAnalysis,
    PairOutcome,
    PairResult,
    Proposal,
    VoteDecision,
    parse_agent_config,
    utcnow,
)

logger = logging.getLogger("clawd_worker.agents.executor")

ALREADY_VOTED = "already_voted"
LEDGER_LOOKUP_FAILED = "ledger_lookup_failed"
UNEXPECTED_ERROR = "unexpected_error"


class AgentStore(Protocol):
    async def list_active_agents(self) -> List[Agent]: ...
    async def list_tracked_realms(self) -> List[Dict[str, Any]]: ...
    async def has_agent_voted(self, agent_id: str, proposal_address: str) -> bool: ...
    async def record_decision(self, decision: VoteDecision, tx_signature: Optional[str] = None) -> None: ...
    async def store_ai_analysis(self, agent_id: str, proposal_address: str, analysis: GovernanceAnalysis) -> None: ...


class ProposalSource(Protocol):
    async def list_open_proposals(self, realms: List[Dict[str, Any]]) -> List[Proposal]: ...
    async def build_cast_vote_transaction(
        self,
        proposal: Proposal,
        voter_wallet_address: str,
        vote_direction: str,
        delegator_address: Optional[str] = None,
    ) -> str: ...


def _failure(agent: Agent, proposal: Proposal, kind: str, message: str) -> CycleFailure:
    return CycleFailure(
        agent_id=agent.id,
        proposal_address=proposal.address,
        kind=kind,
        message=message,
    )


class CycleExecutor:
    """Runs one cycle with a bounded worker pool and returns its summary."""

    def __init__(
        self,
        store: AgentStore,
        proposals: ProposalSource,
        decision_engine: VoteDecisionEngine,
        signer: TransactionSigner,
        observability: Optional[ObservabilityAgent] = None,
        throttle_delay_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.proposals = proposals
        self.decision_engine = decision_engine
        self.signer = signer
        self.observability = observability
        self.throttle_delay_seconds = throttle_delay_seconds
        self._sleep = sleep
        self._decisions_started = 0

    async def _enumerate(self) -> Tuple[List[Agent], List[Proposal]]:
        try:
            agents = await self.store.list_active_agents()
        except Exception as e:
            raise EnumerationFailed(f"Could not list agents: {type(e).__name__}: {e}") from e

        try:
            realms = await self.store.list_tracked_realms()
            proposals = await self.proposals.list_open_proposals(realms)
        except Exception as e:
            raise EnumerationFailed(f"Could not list proposals: {type(e).__name__}: {e}") from e

        return agents, proposals

    async def run_cycle(self, dry_run: bool = False, max_concurrency: int = 1) -> CycleSummary:
        """
        Run one execution cycle.

        Returns:
            CycleSummary, even if every pair failed

        Raises:
            EnumerationFailed: agents or proposals could not be listed
        """
        summary = CycleSummary(dry_run=dry_run)
        logger.info(f"=== CYCLE START {summary.cycle_id[:8]} ({'dry run' if dry_run else 'live'}) ===")

        agents, proposals = await self._enumerate()
        eligible = [agent for agent in agents if is_eligible(agent)]

        summary.agents_scanned = len(agents)
        summary.agents_eligible = len(eligible)
        summary.active_proposals = len(proposals)

        pairs = [(agent, proposal) for agent in eligible for proposal in proposals]
        summary.combinations_considered = len(pairs)
        logger.info(
            f"{len(eligible)}/{len(agents)} eligible agents, "
            f"{len(proposals)} open proposals, {len(pairs)} pairs"
        )

        results: List[Optional[PairResult]] = [None] * len(pairs)
        cursor = 0
        self._decisions_started = 0

        async def worker():
            nonlocal cursor
            while cursor < len(pairs):
                index = cursor
                cursor += 1
                agent, proposal = pairs[index]
                results[index] = await self._process_pair(agent, proposal, dry_run)

        pool_size = max(1, min(max_concurrency, len(pairs)))
        if pairs:
            await asyncio.gather(*(worker() for _ in range(pool_size)))

        # Fold in input order so the summary is independent of completion order
        for result in results:
            if result is None:
                continue
            summary.fold(result)
            if self.observability:
                self.observability.log_vote(result, dry_run=dry_run)

        summary.finished_at = utcnow()
        if self.observability:
            self.observability.log_cycle(summary)

        logger.info(
            f"=== CYCLE END {summary.cycle_id[:8]}: executed={summary.executed} "
            f"skipped={summary.skipped} rate_limited={summary.rate_limited} failed={summary.failed} ==="
        )
        return summary

    async def _throttle(self):
        if self._decisions_started > 0 and self.throttle_delay_seconds > 0:
            await self._sleep(self.throttle_delay_seconds)
        self._decisions_started += 1

    async def _process_pair(self, agent: Agent, proposal: Proposal, dry_run: bool) -> PairResult:
        """Never raises: any error ends this pair only."""
        try:
            return await self._run_pair(agent, proposal, dry_run)
        except Exception as e:
            logger.exception(f"Unexpected error for agent={agent.id} proposal={proposal.address}")
            return PairResult(
                outcome=PairOutcome.FAILED,
                error=_failure(agent, proposal, UNEXPECTED_ERROR, f"{type(e).__name__}: {e}"),
                agent_id=agent.id,
                proposal_address=proposal.address,
            )

    async def _run_pair(self, agent: Agent, proposal: Proposal, dry_run: bool) -> PairResult:
        base = {"agent_id": agent.id, "proposal_address": proposal.address}

        try:
            if await self.store.has_agent_voted(agent.id, proposal.address):
                logger.debug(f"Agent {agent.id} already voted on {proposal.address}")
                return PairResult(outcome=PairOutcome.SKIPPED, skip_reason=ALREADY_VOTED, **base)
        except Exception as e:
            logger.warning(f"Vote lookup failed for agent={agent.id} proposal={proposal.address}: {e}")
            return PairResult(
                outcome=PairOutcome.FAILED,
                error=_failure(agent, proposal, LEDGER_LOOKUP_FAILED, str(e)),
                **base,
            )

        await self._throttle()

        try:
            decision, analysis = await self.decision_engine.analyze(agent, proposal)
        except DecisionFailed as e:
            logger.warning(str(e))
            return PairResult(
                outcome=PairOutcome.FAILED,
                error=_failure(agent, proposal, e.kind, str(e)),
                **base,
            )

        if not decision.should_vote:
            if not dry_run:
                await self._store_analysis(agent, proposal, analysis)
                await self._record(decision, None)
            return PairResult(
                outcome=PairOutcome.SKIPPED,
                decision=decision,
                skip_reason=decision.skip_reason,
                **base,
            )

        if dry_run:
            logger.info(
                f"[DRY RUN] Agent {agent.id} would vote {decision.action.value} on {proposal.address}"
            )
            return PairResult(outcome=PairOutcome.DRY_RUN, decision=decision, **base)

        await self._store_analysis(agent, proposal, analysis)
        return await self._execute_vote(agent, proposal, decision)

    async def _execute_vote(self, agent: Agent, proposal: Proposal, decision: VoteDecision) -> PairResult:
        base = {"agent_id": agent.id, "proposal_address": proposal.address, "decision": decision}
        config = parse_agent_config(agent.config_json, self.decision_engine.default_threshold)

        try:
            serialized = await self.proposals.build_cast_vote_transaction(
                proposal,
                agent.privy_wallet_address,
                decision.action.to_direction(),
                config.delegator_address,
            )
            tx_hash = await self.signer.sign_and_submit(
                agent.privy_wallet_id,
                agent.id,
                serialized,
            )
        except RateLimitExceeded as e:
            logger.info(str(e))
            return PairResult(
                outcome=PairOutcome.RATE_LIMITED,
                skip_reason=e.kind,
                error=_failure(agent, proposal, e.kind, str(e)),
                **base,
            )
        except SigningFailed as e:
            logger.error(f"Agent {agent.id} vote on {proposal.address} failed: {e}")
            return PairResult(
                outcome=PairOutcome.FAILED,
                error=_failure(agent, proposal, e.kind, str(e)),
                **base,
            )
        except (InvalidTransaction, TransactionBuildFailed) as e:
            logger.warning(f"Agent {agent.id} vote on {proposal.address} not submitted: {e}")
            return PairResult(
                outcome=PairOutcome.FAILED,
                error=_failure(agent, proposal, e.kind, str(e)),
                **base,
            )

        logger.info(
            f"Agent {agent.id} voted {decision.action.value} on {proposal.address} (tx={tx_hash})"
        )
        await self._record(decision, tx_hash)
        return PairResult(outcome=PairOutcome.EXECUTED, tx_hash=tx_hash, **base)

    async def _store_analysis(self, agent: Agent, proposal: Proposal, analysis: GovernanceAnalysis):
        try:
            await self.store.store_ai_analysis(agent.id, proposal.address, analysis)
        except Exception as e:
            logger.error(f"Failed to store analysis for agent={agent.id} proposal={proposal.address}: {e}")

    async def _record(self, decision: VoteDecision, tx_hash: Optional[str]):
        try:
            await self.store.record_decision(decision, tx_hash)
        except Exception as e:
            logger.error(
                f"Failed to record vote for agent={decision.agent_id} "
                f"proposal={decision.proposal_address}: {e}"
            )
