"""
ObservabilityAgent - Cycle and vote audit trail.

Purpose: Persist every cycle summary and pair outcome. Never raises into the cycle.
"""
import json
import logging
from pathlib import Path
from typing import List

from ..config import WorkerConfig
from ..schemas import CycleSummary, PairResult, utcnow

logger = logging.getLogger("clawd_worker.agents.observability")


class ObservabilityAgent:
    """Writes cycle summaries and vote outcomes to the log directory."""

    def __init__(self, config: WorkerConfig):
        self.config = config
        self.log_dir = Path(config.log_dir)
        self._ensure_log_dir()

    def _ensure_log_dir(self):
        try:
            (self.log_dir / "cycles").mkdir(parents=True, exist_ok=True)
            (self.log_dir / "votes").mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create log directories under {self.log_dir}: {e}")

    def log_cycle(self, summary: CycleSummary):
        """Persist the complete cycle summary and log a one-line digest."""
        timestamp = summary.started_at.strftime("%Y%m%d_%H%M%S")
        filename = self.log_dir / "cycles" / f"cycle_{timestamp}_{summary.cycle_id[:8]}.json"

        try:
            with open(filename, "w") as f:
                json.dump(summary.model_dump(mode="json"), f, indent=2, default=str)
            logger.debug(f"Cycle logged: {filename}")
        except Exception as e:
            logger.error(f"Failed to log cycle: {e}")

        self._log_summary(summary)

    def _log_summary(self, summary: CycleSummary):
        duration_ms = 0.0
        if summary.finished_at:
            duration_ms = (summary.finished_at - summary.started_at).total_seconds() * 1000

        logger.info(
            f"CYCLE SUMMARY | "
            f"{'DRY RUN | ' if summary.dry_run else ''}"
            f"Agents: {summary.agents_eligible}/{summary.agents_scanned} | "
            f"Proposals: {summary.active_proposals} | "
            f"Pairs: {summary.combinations_considered} | "
            f"Executed: {summary.executed} | "
            f"Skipped: {summary.skipped} | "
            f"Rate limited: {summary.rate_limited} | "
            f"Failed: {summary.failed} | "
            f"Duration: {duration_ms:.0f}ms"
        )

    def log_vote(self, result: PairResult, dry_run: bool = False):
        """Append one pair outcome to today's votes file."""
        timestamp = utcnow()
        decision = result.decision

        record = {
            "timestamp": timestamp.isoformat(),
            "agent_id": result.agent_id,
            "proposal_address": result.proposal_address,
            "outcome": result.outcome.value,
            "dry_run": dry_run,
            "action": decision.action.value if decision else None,
            "confidence": decision.confidence if decision else None,
            "tx_hash": result.tx_hash,
            "skip_reason": result.skip_reason,
            "error": result.error.model_dump() if result.error else None,
        }

        votes_file = self.log_dir / "votes" / f"votes_{timestamp.strftime('%Y%m%d')}.jsonl"

        try:
            with open(votes_file, "a") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except Exception as e:
            logger.error(f"Failed to log vote: {e}")

    def get_recent_cycles(self, limit: int = 10) -> List[dict]:
        """Most recent cycle summaries, newest first."""
        cycles_dir = self.log_dir / "cycles"

        if not cycles_dir.exists():
            return []

        files = sorted(cycles_dir.glob("cycle_*.json"), reverse=True)[:limit]

        results = []
        for f in files:
            try:
                with open(f, "r") as file:
                    results.append(json.load(file))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable cycle log {f}: {e}")

        return results
