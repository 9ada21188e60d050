"""
Pydantic schemas for the vote execution pipeline - strict contract between
the reasoning collaborator, the decision engine and the signer.
"""
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


DEFAULT_CONFIDENCE_THRESHOLD = 0.65
EMPTY_DESCRIPTION = "No description provided on-chain."
UNKNOWN_RISK = "Unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Agent(BaseModel):
    """Autonomous voting identity as stored in the agent store."""
    id: str
    owner_wallet: str = ""
    name: str = ""
    values_profile: str = ""
    config_json: str = "{}"
    risk_tolerance: str = "moderate"
    is_active: bool = False
    privy_wallet_id: Optional[str] = None
    privy_wallet_address: Optional[str] = None
    total_votes: int = 0
    accuracy_score: float = 0.0
    delegation_count: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v) -> str:
        return str(v)

    @field_validator("config_json", mode="before")
    @classmethod
    def coerce_config(cls, v) -> str:
        if v is None:
            return "{}"
        if isinstance(v, (dict, list)):
            return json.dumps(v)
        return str(v)


class AgentConfig(BaseModel):
    """Structured agent configuration parsed from ``Agent.config_json``."""
    auto_vote: bool = False
    confidence_threshold: float = Field(default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0)
    values: List[str] = Field(default_factory=list)
    focus_areas: List[str] = Field(default_factory=list)
    risk_tolerance: Optional[str] = None
    delegator_address: Optional[str] = None


def _str_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float))]


def parse_agent_config(
    raw: Optional[str],
    default_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> AgentConfig:
    """Parse raw config JSON, falling back to fail-closed defaults on any error."""
    defaults = AgentConfig(confidence_threshold=default_threshold)
    if not raw:
        return defaults
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return defaults
    if not isinstance(parsed, dict):
        return defaults

    threshold = parsed.get("confidenceThreshold")
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
        threshold = default_threshold

    delegator = parsed.get("delegatorAddress")
    risk = parsed.get("riskTolerance")

    return AgentConfig(
        auto_vote=parsed.get("autoVote") is True,
        confidence_threshold=float(threshold),
        values=_str_list(parsed.get("values")),
        focus_areas=_str_list(parsed.get("focusAreas")),
        risk_tolerance=risk if isinstance(risk, str) else None,
        delegator_address=delegator if isinstance(delegator, str) and delegator else None,
    )


class ProposalStatus(str, Enum):
    DRAFT = "draft"
    VOTING = "voting"
    SUCCEEDED = "succeeded"
    DEFEATED = "defeated"
    EXECUTING = "executing"
    COMPLETED = "completed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ProposalStatus":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class Proposal(BaseModel):
    """Read-only snapshot of a governance proposal."""
    address: str
    realm_name: str = ""
    realm_address: str = ""
    title: str = ""
    description: str = EMPTY_DESCRIPTION
    status: ProposalStatus = ProposalStatus.UNKNOWN
    for_votes: float = 0
    against_votes: float = 0
    abstain_votes: float = 0
    voting_ends_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v) -> ProposalStatus:
        if isinstance(v, ProposalStatus):
            return v
        return ProposalStatus.parse(v)

    @field_validator("description", mode="before")
    @classmethod
    def normalize_description(cls, v) -> str:
        return v if v else EMPTY_DESCRIPTION

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """Only proposals in voting status whose window has not closed are candidates."""
        if self.status != ProposalStatus.VOTING:
            return False
        if self.voting_ends_at is None:
            return True
        now = now or utcnow()
        ends_at = self.voting_ends_at
        if ends_at.tzinfo is None:
            ends_at = ends_at.replace(tzinfo=timezone.utc)
        return ends_at > now


class VoteAction(str, Enum):
    FOR = "FOR"
    AGAINST = "AGAINST"
    ABSTAIN = "ABSTAIN"
    SKIP = "SKIP"

    def to_direction(self) -> str:
        """On-chain vote direction for the cast-vote instruction."""
        if self == VoteAction.SKIP:
            raise ValueError("SKIP has no on-chain vote direction")
        return self.value.lower()


class VoteRecommendation(BaseModel):
    """Structured recommendation from the reasoning collaborator."""
    vote: VoteAction
    confidence: float = Field(ge=0.0, le=1.0, description="0-1 confidence score")
    reasoning: str = Field(description="Reasoning for the vote recommendation")
    conditions: List[str] = Field(default_factory=list, description="Caveats for this recommendation")

    @field_validator("vote", mode="before")
    @classmethod
    def uppercase_vote(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
        if v == VoteAction.SKIP or v == "SKIP":
            raise ValueError("recommendation vote must be FOR, AGAINST or ABSTAIN")
        return v


class RiskAssessment(BaseModel):
    """Risk fields are advisory; missing ones default to a placeholder."""
    treasury_impact: str = UNKNOWN_RISK
    security_risk: str = UNKNOWN_RISK
    centralization_risk: str = UNKNOWN_RISK
    overall_risk_score: Optional[float] = Field(default=None, ge=0, le=100)


class GovernanceAnalysis(BaseModel):
    """Full analysis payload. Only the recommendation is mandatory."""
    summary: str = ""
    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    recommendation: VoteRecommendation

    @field_validator("risk_assessment", mode="before")
    @classmethod
    def default_risk(cls, v):
        return RiskAssessment() if v is None else v


class VoteDecision(BaseModel):
    """Ephemeral decision for one (agent, proposal) pair."""
    agent_id: str
    proposal_address: str
    action: VoteAction
    recommended_vote: VoteAction
    confidence: float = Field(ge=0.0, le=1.0)
    threshold: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    conditions: List[str] = Field(default_factory=list)
    skip_reason: Optional[str] = None

    @property
    def should_vote(self) -> bool:
        return self.action != VoteAction.SKIP


class PairOutcome(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    DRY_RUN = "dry_run"


class CycleFailure(BaseModel):
    """Failure detail for one (agent, proposal) pair."""
    agent_id: str
    proposal_address: str
    kind: str
    message: str


class PairResult(BaseModel):
    agent_id: str
    proposal_address: str
    outcome: PairOutcome
    decision: Optional[VoteDecision] = None
    tx_hash: Optional[str] = None
    skip_reason: Optional[str] = None
    error: Optional[CycleFailure] = None


class CycleSummary(BaseModel):
    """Aggregate record of one execution cycle. Observability only."""
    cycle_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    dry_run: bool = False
    agents_scanned: int = 0
    agents_eligible: int = 0
    active_proposals: int = 0
    combinations_considered: int = 0
    executed: int = 0
    skipped: int = 0
    rate_limited: int = 0
    failed: int = 0
    dry_run_decisions: int = 0
    failures: List[CycleFailure] = Field(default_factory=list)

    def fold(self, result: PairResult) -> None:
        """Merge one pair result into the counters."""
        if result.outcome == PairOutcome.EXECUTED:
            self.executed += 1
        elif result.outcome == PairOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome == PairOutcome.RATE_LIMITED:
            self.rate_limited += 1
            self.skipped += 1
        elif result.outcome == PairOutcome.DRY_RUN:
            self.dry_run_decisions += 1
        else:
            self.failed += 1
        if result.error is not None:
            self.failures.append(result.error)


class WorkerState(BaseModel):
    """Process-level scheduler state. Lost on restart without correctness impact."""
    is_running: bool = False
    cycle_in_progress: bool = False
    started_at: Optional[datetime] = None
    last_cycle_summary: Optional[CycleSummary] = None
    last_cycle_at: Optional[datetime] = None
    last_cycle_error: Optional[str] = None
    total_cycles_run: int = 0
    total_votes_executed: int = 0
    total_votes_failed: int = 0
    next_cycle_at: Optional[datetime] = None
    interval_ms: int = 0

    def health(self) -> dict:
        uptime = 0
        if self.started_at:
            uptime = int((utcnow() - self.started_at).total_seconds())
        return {
            "status": "ok" if self.is_running else "starting",
            "uptime": uptime,
            "lastCycleAt": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "cycleInProgress": self.cycle_in_progress,
        }
