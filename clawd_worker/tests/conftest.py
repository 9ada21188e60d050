"""
Shared fakes for the vote worker tests.

The fakes stand in for SpacetimeDB, the governance API, the reasoning
service and Privy so cycles can run fully in memory.
"""
import json
from typing import Dict, List, Optional

import pytest

from clawd_worker.agents.decision import VoteDecisionEngine
from clawd_worker.agents.executor import CycleExecutor
from clawd_worker.agents.rate_limiter import RateLimiter
from clawd_worker.agents.signer import TransactionSigner
from clawd_worker.config import WorkerConfig
from clawd_worker.schemas import (
    Agent,
    GovernanceAnalysis,
    Proposal,
    ProposalStatus,
    VoteDecision,
)
from clawd_worker.services.privy_client import PrivyApiError


def make_agent(
    agent_id: str = "1",
    threshold: float = 0.7,
    auto_vote=True,
    wallet_id: Optional[str] = "w1",
    wallet_address: Optional[str] = "a1",
    is_active: bool = True,
    **config,
) -> Agent:
    cfg = {"autoVote": auto_vote, "confidenceThreshold": threshold}
    cfg.update(config)
    return Agent(
        id=agent_id,
        name=f"agent-{agent_id}",
        is_active=is_active,
        config_json=json.dumps(cfg),
        privy_wallet_id=wallet_id,
        privy_wallet_address=wallet_address,
    )


def make_proposal(address: str = "prop1", realm_address: str = "realm1") -> Proposal:
    return Proposal(
        address=address,
        realm_name="Test DAO",
        realm_address=realm_address,
        title=f"Proposal {address}",
        description="Fund the thing",
        status=ProposalStatus.VOTING,
    )


def make_analysis(vote: str = "FOR", confidence: float = 0.9) -> GovernanceAnalysis:
    return GovernanceAnalysis.model_validate({
        "summary": "summary",
        "recommendation": {
            "vote": vote,
            "confidence": confidence,
            "reasoning": "Because.",
            "conditions": [],
        },
    })


class FakeStore:
    """In-memory agent store and vote ledger."""

    def __init__(self, agents: List[Agent], realms: Optional[List[Dict]] = None):
        self.agents = agents
        self.realms = realms if realms is not None else [{"address": "realm1", "name": "Test DAO"}]
        self.votes: List[tuple] = []
        self.analyses: List[tuple] = []
        self.fail_agents = False
        self.fail_record = False

    async def list_active_agents(self) -> List[Agent]:
        if self.fail_agents:
            raise RuntimeError("agent store down")
        return list(self.agents)

    async def list_tracked_realms(self) -> List[Dict]:
        return list(self.realms)

    async def has_agent_voted(self, agent_id: str, proposal_address: str) -> bool:
        return any(v[0] == agent_id and v[1] == proposal_address for v in self.votes)

    async def record_decision(self, decision: VoteDecision, tx_signature: Optional[str] = None) -> None:
        if self.fail_record:
            raise RuntimeError("ledger write failed")
        vote = "abstain" if not decision.should_vote else decision.action.to_direction()
        self.votes.append((decision.agent_id, decision.proposal_address, vote, tx_signature))

    async def store_ai_analysis(self, agent_id: str, proposal_address: str, analysis: GovernanceAnalysis) -> None:
        self.analyses.append((agent_id, proposal_address, analysis))


class FakeProposals:
    def __init__(self, proposals: List[Proposal]):
        self.proposals = proposals
        self.build_calls: List[tuple] = []
        self.fail = False
        self.crash_for: set = set()

    async def list_open_proposals(self, realms: List[Dict]) -> List[Proposal]:
        if self.fail:
            raise RuntimeError("governance api down")
        return list(self.proposals)

    async def build_cast_vote_transaction(
        self,
        proposal: Proposal,
        voter_wallet_address: str,
        vote_direction: str,
        delegator_address: Optional[str] = None,
    ) -> str:
        self.build_calls.append((proposal.address, voter_wallet_address, vote_direction, delegator_address))
        if proposal.address in self.crash_for:
            raise KeyError("blockhash")
        return "base64TxData123456"


class FakeReasoning:
    """Returns a fixed analysis, or one per proposal address."""

    def __init__(self, analysis: Optional[GovernanceAnalysis] = None, by_proposal: Optional[Dict] = None):
        self.analysis = analysis or make_analysis()
        self.by_proposal = by_proposal or {}
        self.calls: List[tuple] = []

    async def analyze_proposal(self, proposal: Proposal, agent_values: str = "") -> GovernanceAnalysis:
        self.calls.append((proposal.address, agent_values))
        result = self.by_proposal.get(proposal.address, self.analysis)
        if isinstance(result, Exception):
            raise result
        return result


class FakeWallet:
    """Custodial wallet double counting external sign calls."""

    def __init__(self, fail_for: Optional[set] = None, crash_for: Optional[set] = None):
        self.calls: List[tuple] = []
        self.fail_for = fail_for or set()
        self.crash_for = crash_for or set()

    async def sign_and_send(self, wallet_id: str, serialized_transaction: str) -> Optional[str]:
        self.calls.append((wallet_id, serialized_transaction))
        if wallet_id in self.fail_for:
            raise PrivyApiError("policy violation", status_code=400)
        if wallet_id in self.crash_for:
            raise RuntimeError("wallet sdk bug")
        return f"sig-{len(self.calls)}"


class Harness:
    def __init__(self, agents, proposals, reasoning=None, wallet=None, rate_limiter=None):
        self.store = FakeStore(agents)
        self.proposals = FakeProposals(proposals)
        self.reasoning = reasoning or FakeReasoning()
        self.wallet = wallet or FakeWallet()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.executor = CycleExecutor(
            store=self.store,
            proposals=self.proposals,
            decision_engine=VoteDecisionEngine(self.reasoning),
            signer=TransactionSigner(self.wallet, self.rate_limiter),
        )


@pytest.fixture
def harness():
    def _build(agents=None, proposals=None, **kwargs) -> Harness:
        return Harness(
            agents if agents is not None else [make_agent()],
            proposals if proposals is not None else [make_proposal()],
            **kwargs,
        )
    return _build


@pytest.fixture
def worker_config(tmp_path) -> WorkerConfig:
    return WorkerConfig(
        interval_ms=10,
        throttle_delay_ms=0,
        log_dir=str(tmp_path / "logs"),
        privy_app_id="app-id",
        privy_app_secret="app-secret",
        privy_api_url="https://privy.test/v1",
        stdb_url="http://stdb.test",
        governance_api_url="http://gov.test",
    )
