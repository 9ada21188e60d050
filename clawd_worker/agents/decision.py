"""
VoteDecisionEngine - turns a reasoning recommendation into a vote action.

Hard constraints:
- Confidence below the agent's threshold is always SKIP, whatever the vote
- No caching: every call asks the reasoning collaborator again
- Collaborator failure is DecisionFailed, never an implicit AGAINST/ABSTAIN
"""
import logging
from typing import Protocol

from ..errors import DecisionFailed
from ..resilience import CircuitBreakerOpen
from ..schemas import (
    Agent,
    AgentConfig,
    DEFAULT_CONFIDENCE_THRESHOLD,
    GovernanceAnalysis,
    Proposal,
    VoteAction,
    VoteDecision,
    parse_agent_config,
)

logger = logging.getLogger("clawd_worker.agents.decision")

BELOW_THRESHOLD = "below_confidence_threshold"


class ReasoningCollaborator(Protocol):
    async def analyze_proposal(self, proposal: Proposal, agent_values: str = "") -> GovernanceAnalysis:
        ...


def build_agent_values_prompt(agent: Agent, config: AgentConfig) -> str:
    """Describe the agent's priorities for the reasoning prompt."""
    values_text = ", ".join(config.values) if config.values else agent.values_profile
    focus_text = ", ".join(config.focus_areas) if config.focus_areas else "general governance"
    risk = config.risk_tolerance or agent.risk_tolerance

    return "\n".join([
        f"Agent name: {agent.name}",
        f"Core values: {values_text}",
        f"Focus areas: {focus_text}",
        f"Risk tolerance: {risk}",
    ])


class VoteDecisionEngine:
    """Obtains a recommendation and applies the confidence threshold."""

    def __init__(
        self,
        reasoning: ReasoningCollaborator,
        default_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ):
        self.reasoning = reasoning
        self.default_threshold = default_threshold

    async def analyze(self, agent: Agent, proposal: Proposal) -> tuple[VoteDecision, GovernanceAnalysis]:
        """Decide and also return the raw analysis for the ledger."""
        config = parse_agent_config(agent.config_json, self.default_threshold)
        values = build_agent_values_prompt(agent, config)

        try:
            analysis = await self.reasoning.analyze_proposal(proposal, values)
        except CircuitBreakerOpen as e:
            raise DecisionFailed(str(e)) from e
        except Exception as e:
            raise DecisionFailed(
                f"Reasoning failed for agent={agent.id} proposal={proposal.address}: "
                f"{type(e).__name__}: {e}"
            ) from e

        return self._apply_threshold(agent, proposal, config, analysis), analysis

    async def decide(self, agent: Agent, proposal: Proposal) -> VoteDecision:
        decision, _ = await self.analyze(agent, proposal)
        return decision

    def _apply_threshold(
        self,
        agent: Agent,
        proposal: Proposal,
        config: AgentConfig,
        analysis: GovernanceAnalysis,
    ) -> VoteDecision:
        recommendation = analysis.recommendation
        threshold = config.confidence_threshold

        if recommendation.confidence < threshold:
            reason = (
                f"Confidence {recommendation.confidence:.3f} below threshold {threshold:.3f}."
            )
            logger.info(
                f"Agent {agent.id} skipping {proposal.address}: {reason}"
            )
            return VoteDecision(
                agent_id=agent.id,
                proposal_address=proposal.address,
                action=VoteAction.SKIP,
                recommended_vote=recommendation.vote,
                confidence=recommendation.confidence,
                threshold=threshold,
                reasoning=f"{recommendation.reasoning}\n\n{reason}",
                conditions=recommendation.conditions,
                skip_reason=BELOW_THRESHOLD,
            )

        logger.info(
            f"Agent {agent.id} decided {recommendation.vote.value} on {proposal.address} "
            f"(confidence {recommendation.confidence:.2f} >= {threshold:.2f})"
        )
        return VoteDecision(
            agent_id=agent.id,
            proposal_address=proposal.address,
            action=recommendation.vote,
            recommended_vote=recommendation.vote,
            confidence=recommendation.confidence,
            threshold=threshold,
            reasoning=recommendation.reasoning,
            conditions=recommendation.conditions,
        )
