"""
Governance HTTP API client - proposal source and vote transaction builder.

Reads are idempotent and go through retry + circuit breaker. Building a
cast-vote transaction is attempted once per pair; the blockhash inside it
goes stale, so a caller retry must request a fresh one.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ..config import WorkerConfig
from ..errors import TransactionBuildFailed
from ..resilience import CircuitBreaker, RetryConfig, get_circuit_breaker, with_retry
from ..schemas import Proposal, utcnow

logger = logging.getLogger("clawd_worker.services.governance_client")


class GovernanceApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def proposal_from_api(raw: Dict[str, Any], realm_address: str, realm_name: str) -> Proposal:
    """Map a serialized realm proposal onto the worker's Proposal snapshot."""
    return Proposal(
        address=raw["address"],
        realm_name=realm_name,
        realm_address=realm_address,
        title=raw.get("title") or "",
        description=raw.get("descriptionLink") or raw.get("description"),
        status=raw.get("status"),
        for_votes=raw.get("forVotes") or 0,
        against_votes=raw.get("againstVotes") or 0,
        abstain_votes=raw.get("abstainVotes") or 0,
        voting_ends_at=raw.get("votingEndAt"),
    )


class GovernanceClient:
    """Lists open proposals per tracked realm and builds unsigned vote transactions."""

    def __init__(
        self,
        cfg: WorkerConfig,
        client: Optional[httpx.AsyncClient] = None,
        circuit: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.base_url = cfg.governance_api_url.rstrip("/")
        self._client = client
        self.circuit = circuit or get_circuit_breaker("governance")
        self.retry_config = retry_config or RetryConfig()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def _get_realm(self, realm_address: str) -> Dict[str, Any]:
        response = await self.client.get(f"{self.base_url}/api/governance/realms/{realm_address}")
        if response.status_code >= 400:
            raise GovernanceApiError(
                f"Realm {realm_address} fetch failed: {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    async def get_realm_proposals(self, realm_address: str, realm_name: str = "") -> List[Proposal]:
        data = await with_retry(
            lambda: self._get_realm(realm_address),
            circuit=self.circuit,
            config=self.retry_config,
        )
        name = realm_name or (data.get("realm") or {}).get("name") or ""

        proposals = []
        for raw in data.get("proposals") or []:
            try:
                proposals.append(proposal_from_api(raw, realm_address, name))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed proposal in realm {realm_address}: {e}")
        return proposals

    async def list_open_proposals(
        self,
        realms: List[Dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> List[Proposal]:
        """
        Collect proposals currently open for voting across the tracked realms.

        A realm that cannot be fetched is logged and skipped.
        """
        now = now or utcnow()
        open_proposals: List[Proposal] = []
        seen = set()

        for realm in realms:
            address = realm.get("address")
            if not address:
                continue
            try:
                proposals = await self.get_realm_proposals(address, realm.get("name") or "")
            except Exception as e:
                logger.warning(f"Failed to fetch proposals for realm {address}: {e}")
                continue

            for proposal in proposals:
                if proposal.address in seen or not proposal.is_open(now):
                    continue
                seen.add(proposal.address)
                open_proposals.append(proposal)

        logger.info(f"Found {len(open_proposals)} open proposals across {len(realms)} realms")
        return open_proposals

    async def build_cast_vote_transaction(
        self,
        proposal: Proposal,
        voter_wallet_address: str,
        vote_direction: str,
        delegator_address: Optional[str] = None,
    ) -> str:
        """
        Request a fresh unsigned cast-vote transaction (base64).

        Raises:
            TransactionBuildFailed: builder unreachable, rejected, or returned no transaction
        """
        payload = {
            "voterWalletAddress": voter_wallet_address,
            "voteDirection": vote_direction,
            "realmAddress": proposal.realm_address,
            "delegatorAddress": delegator_address,
        }
        url = f"{self.base_url}/api/governance/proposals/{proposal.address}/cast-vote"

        try:
            response = await self.client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise TransactionBuildFailed(f"Cast-vote builder unreachable: {e}") from e

        if response.status_code >= 400:
            raise TransactionBuildFailed(
                f"Cast-vote builder returned {response.status_code} for {proposal.address}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransactionBuildFailed(f"Cast-vote builder returned invalid JSON: {e}") from e
        serialized = body.get("serializedTransaction") if isinstance(body, dict) else None
        if not serialized:
            raise TransactionBuildFailed(f"No serializedTransaction for {proposal.address}")
        return serialized

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
