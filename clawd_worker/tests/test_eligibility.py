"""
Eligibility and configuration tests for the vote worker.
"""
import os
from unittest.mock import patch

import pytest

from clawd_worker.agents.eligibility import is_eligible
from clawd_worker.config import WorkerConfig, load_config
from clawd_worker.schemas import Agent, parse_agent_config

from conftest import make_agent


class TestEligibility:
    """An agent may transact only when active, autoVote and wallet are all set."""

    def test_fully_configured_agent_is_eligible(self):
        assert is_eligible(make_agent()) is True

    def test_inactive_agent_is_not_eligible(self):
        assert is_eligible(make_agent(is_active=False)) is False

    def test_auto_vote_off_is_not_eligible(self):
        assert is_eligible(make_agent(auto_vote=False)) is False

    def test_auto_vote_must_be_boolean_true(self):
        """A truthy string is not an opt-in."""
        assert is_eligible(make_agent(auto_vote="true")) is False

    def test_missing_wallet_id_is_not_eligible(self):
        assert is_eligible(make_agent(wallet_id=None)) is False

    def test_missing_wallet_address_is_not_eligible(self):
        assert is_eligible(make_agent(wallet_address="")) is False

    def test_malformed_config_fails_closed(self):
        agent = Agent(
            id=1,
            is_active=True,
            config_json="{not json",
            privy_wallet_id="w1",
            privy_wallet_address="a1",
        )
        assert is_eligible(agent) is False

    def test_non_object_config_fails_closed(self):
        agent = Agent(
            id=2,
            is_active=True,
            config_json="[1, 2, 3]",
            privy_wallet_id="w1",
            privy_wallet_address="a1",
        )
        assert is_eligible(agent) is False


class TestAgentConfigParsing:
    """Agent config JSON parsing with fail-closed defaults."""

    def test_reads_camel_case_keys(self):
        cfg = parse_agent_config(
            '{"autoVote": true, "confidenceThreshold": 0.8, "values": ["growth"], '
            '"focusAreas": ["treasury"], "delegatorAddress": "d1"}'
        )
        assert cfg.auto_vote is True
        assert cfg.confidence_threshold == 0.8
        assert cfg.values == ["growth"]
        assert cfg.focus_areas == ["treasury"]
        assert cfg.delegator_address == "d1"

    def test_out_of_range_threshold_uses_default(self):
        cfg = parse_agent_config('{"confidenceThreshold": 1.5}', default_threshold=0.6)
        assert cfg.confidence_threshold == 0.6

    def test_boolean_threshold_uses_default(self):
        cfg = parse_agent_config('{"confidenceThreshold": true}')
        assert cfg.confidence_threshold == 0.65

    def test_empty_config_is_defaults(self):
        cfg = parse_agent_config("")
        assert cfg.auto_vote is False
        assert cfg.confidence_threshold == 0.65


class TestWorkerConfig:
    """Environment loading and safety bounds."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config([])
        assert cfg.enabled is True
        assert cfg.interval_ms == 30000
        assert cfg.max_concurrency == 1
        assert cfg.dry_run is False
        assert cfg.run_once is False
        assert cfg.rate_limit_max_transactions == 5
        assert cfg.default_confidence_threshold == 0.65

    def test_cli_flags(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config(["--once", "--dry-run"])
        assert cfg.run_once is True
        assert cfg.dry_run is True

    def test_env_values(self):
        env = {
            "AGENT_WORKER_ENABLED": "no",
            "AGENT_WORKER_INTERVAL_MS": "5000",
            "AGENT_WORKER_MAX_CONCURRENCY": "4",
            "AGENT_WORKER_DRY_RUN": "YES",
            "SOLANA_NETWORK": "mainnet",
        }
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config([])
        assert cfg.enabled is False
        assert cfg.interval_ms == 5000
        assert cfg.max_concurrency == 4
        assert cfg.dry_run is True
        assert cfg.solana_caip2.startswith("solana:5eykt")

    @pytest.mark.parametrize("raw", ["0", "-10", "abc"])
    def test_invalid_interval_falls_back(self, raw):
        with patch.dict(os.environ, {"AGENT_WORKER_INTERVAL_MS": raw}, clear=True):
            cfg = load_config([])
        assert cfg.interval_ms == 30000

    def test_zero_rate_limit_raises(self):
        with pytest.raises(ValueError, match="SAFETY"):
            WorkerConfig(rate_limit_max_transactions=0)

    def test_threshold_out_of_range_raises(self):
        with pytest.raises(ValueError, match="SAFETY"):
            WorkerConfig(default_confidence_threshold=1.2)

    def test_dry_run_mode_description(self):
        assert WorkerConfig(dry_run=True).get_mode_description().startswith("DRY RUN")
