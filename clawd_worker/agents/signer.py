"""
TransactionSigner - the hard wall between a vote decision and the custodial wallet.

Order of checks per call:
1. Serialized transaction sanity bound (caller bug -> InvalidTransaction)
2. Per-agent rate limit (RateLimitExceeded, no external call)
3. Exactly one custodial wallet call, never retried here

Retries belong to the caller and must rebuild the transaction (stale
blockhash), never resubmit the same bytes.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from .rate_limiter import RateLimiter, RateLimitDecision
from ..errors import InvalidTransaction, RateLimitExceeded, SigningFailed
from ..services.privy_client import PrivyApiError

logger = logging.getLogger("clawd_worker.agents.signer")
audit_logger = logging.getLogger("clawd_worker.audit")

MIN_SERIALIZED_TX_LENGTH = 10


class CustodialWallet(Protocol):
    async def sign_and_send(self, wallet_id: str, serialized_transaction: str) -> Optional[str]:
        ...


class TransactionSigner:
    """Composes rate limiting with the custodial signing call."""

    def __init__(self, wallet: CustodialWallet, rate_limiter: RateLimiter):
        self.wallet = wallet
        self.rate_limiter = rate_limiter

    async def sign_and_submit(
        self,
        wallet_id: str,
        agent_id: str,
        serialized_transaction: str,
    ) -> Optional[str]:
        """
        Sign and broadcast one vote transaction for an agent.

        Returns:
            Transaction hash (None if the wallet service accepted it without one)

        Raises:
            InvalidTransaction: payload below the sanity bound
            RateLimitExceeded: agent budget exhausted for the window
            SigningFailed: wallet service rejected or errored
        """
        if not serialized_transaction or len(serialized_transaction) < MIN_SERIALIZED_TX_LENGTH:
            raise InvalidTransaction(
                f"Invalid serialized transaction for agent {agent_id}: too short or empty"
            )

        decision = await self.rate_limiter.try_consume(agent_id)
        if decision == RateLimitDecision.RATE_LIMITED:
            raise RateLimitExceeded(
                agent_id,
                self.rate_limiter.max_transactions,
                self.rate_limiter.retry_after(agent_id),
            )

        try:
            tx_hash = await self.wallet.sign_and_send(wallet_id, serialized_transaction)
        except PrivyApiError as e:
            raise SigningFailed(e.message, status_code=e.status_code) from e
        except Exception as e:
            raise SigningFailed(f"{type(e).__name__}: {e}") from e

        self._audit(wallet_id, agent_id, tx_hash)
        return tx_hash

    def _audit(self, wallet_id: str, agent_id: str, tx_hash: Optional[str]):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": "sign_and_send_transaction",
            "walletId": wallet_id,
            "agentId": agent_id,
            "txHash": tx_hash or "unknown",
            "status": "submitted",
        }
        audit_logger.info(json.dumps(entry))
