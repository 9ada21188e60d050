"""
Configuration management with safety bounds for the autonomous vote worker.
"""
import os
import sys
from dataclasses import dataclass
from typing import List, Optional


SOLANA_CAIP2 = {
    "devnet": "solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1",
    "mainnet": "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp",
}

TRUTHY = ("1", "true", "yes", "on")

DEFAULT_INTERVAL_MS = 30_000
DEFAULT_MAX_CONCURRENCY = 1
DEFAULT_THROTTLE_MS = 3_000


@dataclass
class WorkerConfig:
    enabled: bool = True
    interval_ms: int = DEFAULT_INTERVAL_MS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    dry_run: bool = False
    run_once: bool = False
    throttle_delay_ms: int = DEFAULT_THROTTLE_MS
    cycle_timeout_seconds: float = 0.0

    rate_limit_max_transactions: int = 5
    rate_limit_window_seconds: float = 3600.0
    default_confidence_threshold: float = 0.65

    privy_app_id: str = ""
    privy_app_secret: str = ""
    privy_api_url: str = "https://api.privy.io/v1"
    solana_network: str = "devnet"

    reasoning_api_key: str = ""
    reasoning_base_url: str = "https://open.bigmodel.cn/api/coding/paas/v4/"
    reasoning_model: str = "glm-5"
    reasoning_max_tokens: int = 1024

    stdb_url: str = "http://localhost:3000"
    stdb_module_name: str = "clawddao"
    governance_api_url: str = "http://localhost:3001"

    port: int = 4000
    log_dir: str = "clawd_worker/logs"

    def __post_init__(self):
        self._validate_safety()

    def _validate_safety(self):
        """Reject limits that would silently disable the per-agent guardrails."""
        if self.rate_limit_max_transactions < 1:
            raise ValueError(
                "SAFETY: AGENT_RATE_LIMIT_MAX_TX must be at least 1. "
                "Disable the worker with AGENT_WORKER_ENABLED=false instead."
            )
        if self.rate_limit_window_seconds <= 0:
            raise ValueError("SAFETY: AGENT_RATE_LIMIT_WINDOW_SECONDS must be positive.")
        if not 0.0 <= self.default_confidence_threshold <= 1.0:
            raise ValueError(
                "SAFETY: AGENT_DEFAULT_CONFIDENCE_THRESHOLD must be within [0, 1]."
            )

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def throttle_delay_seconds(self) -> float:
        return self.throttle_delay_ms / 1000.0

    @property
    def solana_caip2(self) -> str:
        network = "devnet" if self.solana_network == "devnet" else "mainnet"
        return SOLANA_CAIP2[network]

    def privy_configured(self) -> bool:
        return bool(self.privy_app_id and self.privy_app_secret)

    def get_mode_description(self) -> str:
        """Get human-readable description of current mode."""
        if self.dry_run:
            return "DRY RUN: Decisions evaluated and logged but NO transactions signed"
        if not self.privy_configured():
            return "LIVE: Blocked (Privy credentials not configured)"
        return f"LIVE: Votes signed and submitted on {self.solana_network}"

    def runtime_summary(self) -> dict:
        return {
            "enabled": self.enabled,
            "intervalMs": self.interval_ms,
            "maxConcurrency": self.max_concurrency,
            "dryRun": self.dry_run,
            "runOnce": self.run_once,
        }


def read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


def read_int_env(name: str, default: int) -> int:
    """Positive integer from env; anything else falls back to the default."""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        parsed = int(raw.strip(), 10)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


def read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config(argv: Optional[List[str]] = None) -> WorkerConfig:
    """Load configuration from environment variables and CLI flags."""
    args = sys.argv[1:] if argv is None else argv

    return WorkerConfig(
        enabled=read_bool_env("AGENT_WORKER_ENABLED", True),
        interval_ms=read_int_env("AGENT_WORKER_INTERVAL_MS", DEFAULT_INTERVAL_MS),
        max_concurrency=read_int_env("AGENT_WORKER_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
        dry_run="--dry-run" in args or read_bool_env("AGENT_WORKER_DRY_RUN", False),
        run_once="--once" in args,
        throttle_delay_ms=max(0, int(read_float_env("AGENT_WORKER_THROTTLE_MS", DEFAULT_THROTTLE_MS))),
        cycle_timeout_seconds=max(0.0, read_float_env("AGENT_WORKER_CYCLE_TIMEOUT_SECONDS", 0.0)),
        rate_limit_max_transactions=int(read_float_env("AGENT_RATE_LIMIT_MAX_TX", 5)),
        rate_limit_window_seconds=read_float_env("AGENT_RATE_LIMIT_WINDOW_SECONDS", 3600.0),
        default_confidence_threshold=read_float_env("AGENT_DEFAULT_CONFIDENCE_THRESHOLD", 0.65),
        privy_app_id=os.getenv("PRIVY_APP_ID", ""),
        privy_app_secret=os.getenv("PRIVY_APP_SECRET", ""),
        privy_api_url=os.getenv("PRIVY_API_URL", "https://api.privy.io/v1"),
        solana_network=os.getenv("SOLANA_NETWORK", "devnet").lower(),
        reasoning_api_key=os.getenv("ZAI_API_KEY", ""),
        reasoning_base_url=os.getenv("ZAI_BASE_URL", "https://open.bigmodel.cn/api/coding/paas/v4/"),
        reasoning_model=os.getenv("ZAI_MODEL", "glm-5"),
        stdb_url=os.getenv("SPACETIMEDB_URL", "http://localhost:3000"),
        stdb_module_name=os.getenv("SPACETIMEDB_MODULE_NAME", "clawddao"),
        governance_api_url=os.getenv("GOVERNANCE_API_URL", "http://localhost:3001"),
        port=read_int_env("WORKER_PORT", 4000),
        log_dir=os.getenv("LOG_DIR", "clawd_worker/logs"),
    )
