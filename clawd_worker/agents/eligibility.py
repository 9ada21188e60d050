"""
EligibilityFilter - the sole gate between "agent exists" and "agent may transact".

Pure and total: no I/O, never raises. Malformed configuration fails closed.
"""
from ..schemas import Agent, parse_agent_config


def has_custodial_wallet(agent: Agent) -> bool:
    return bool(agent.privy_wallet_id) and bool(agent.privy_wallet_address)


def is_eligible(agent: Agent) -> bool:
    """active AND autoVote AND wallet id AND wallet address."""
    try:
        if not agent.is_active:
            return False
        if not has_custodial_wallet(agent):
            return False
        return parse_agent_config(agent.config_json).auto_vote
    except Exception:
        return False
