"""
SpacetimeDB HTTP client - agent store and vote/activity ledger.

Reducers are called over REST; reads go through the SQL endpoint. The
identity token is obtained once and cached for the life of the client.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import WorkerConfig
from ..schemas import Agent, AgentConfig, GovernanceAnalysis, VoteDecision, parse_agent_config

logger = logging.getLogger("clawd_worker.services.stdb_client")


class StdbError(Exception):
    """SpacetimeDB request failed."""


def escape_sql_string(value: str) -> str:
    return value.replace("'", "''")


def vote_key(agent_id: str, proposal_address: str) -> str:
    return f"{agent_id}:{proposal_address}"


def _unwrap(value: Any) -> Any:
    """SpacetimeDB encodes Option<T> as {"some": v} / {"none": []}."""
    if isinstance(value, dict) and len(value) == 1:
        if "some" in value:
            return value["some"]
        if "none" in value:
            return None
    return value


def _column_name(element: Dict[str, Any]) -> str:
    name = element.get("name")
    if isinstance(name, str):
        return name
    if isinstance(name, dict) and "some" in name:
        return name["some"]
    return ""


def rows_to_dicts(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Turn the first statement result of a SQL response into row dicts."""
    if not results:
        return []
    first = results[0] or {}
    rows = first.get("rows") or []
    elements = (first.get("schema") or {}).get("elements") or []
    columns = [_column_name(e) for e in elements]
    return [
        {column: _unwrap(row[i]) for i, column in enumerate(columns) if i < len(row)}
        for row in rows
    ]


def _u64(agent_id: str) -> Any:
    return int(agent_id) if agent_id.isdigit() else agent_id


class StdbClient:
    """Agent store + vote ledger backed by SpacetimeDB."""

    def __init__(self, cfg: WorkerConfig, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        self.base_url = cfg.stdb_url.rstrip("/")
        self.database = cfg.stdb_module_name
        self._client = client
        self._token: Optional[str] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def _get_token(self) -> str:
        if self._token:
            return self._token
        try:
            response = await self.client.post(f"{self.base_url}/v1/identity")
        except httpx.HTTPError as e:
            raise StdbError(f"SpacetimeDB identity request failed: {e}") from e
        if response.status_code >= 400:
            raise StdbError(f"SpacetimeDB identity request failed: {response.status_code}")

        body: Dict[str, Any] = {}
        try:
            body = response.json()
        except ValueError:
            pass
        token = body.get("token") or response.headers.get("spacetime-identity-token")
        if not token:
            raise StdbError("SpacetimeDB did not return identity/token")
        self._token = token
        logger.info(f"SpacetimeDB identity acquired for {self.database}")
        return token

    async def query_sql(self, sql: str) -> List[Dict[str, Any]]:
        token = await self._get_token()
        try:
            response = await self.client.post(
                f"{self.base_url}/v1/database/{self.database}/sql",
                headers={"Authorization": f"Bearer {token}"},
                content=sql,
            )
        except httpx.HTTPError as e:
            raise StdbError(f"SpacetimeDB SQL query failed: {e}") from e
        if response.status_code >= 400:
            raise StdbError(f"SpacetimeDB SQL query failed: {response.status_code} {response.text}")
        return rows_to_dicts(response.json())

    async def call_reducer(self, reducer: str, args: List[Any]) -> None:
        token = await self._get_token()
        try:
            response = await self.client.post(
                f"{self.base_url}/v1/database/{self.database}/call/{reducer}",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                content=json.dumps(args),
            )
        except httpx.HTTPError as e:
            raise StdbError(f"Reducer {reducer} failed: {e}") from e
        if response.status_code >= 400:
            raise StdbError(f"Reducer {reducer} failed: {response.status_code} {response.text}")

    # ------------------------------------------------------------------
    # Agent store
    # ------------------------------------------------------------------

    async def list_active_agents(self) -> List[Agent]:
        rows = await self.query_sql("SELECT * FROM agents WHERE is_active = true")
        agents = [Agent.model_validate(row) for row in rows]
        # No ORDER BY in SpacetimeDB SQL
        return sorted(agents, key=lambda a: a.total_votes, reverse=True)

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        rows = await self.query_sql(f"SELECT * FROM agents WHERE id = {int(agent_id)}")
        return Agent.model_validate(rows[0]) if rows else None

    async def get_agent_config(self, agent_id: str) -> AgentConfig:
        agent = await self.get_agent(agent_id)
        if agent is None:
            raise StdbError(f"Agent {agent_id} not found")
        return parse_agent_config(agent.config_json, self.cfg.default_confidence_threshold)

    async def list_tracked_realms(self) -> List[Dict[str, Any]]:
        return await self.query_sql("SELECT * FROM tracked_realms WHERE is_active = true")

    # ------------------------------------------------------------------
    # Vote / activity ledger
    # ------------------------------------------------------------------

    async def has_agent_voted(self, agent_id: str, proposal_address: str) -> bool:
        key = escape_sql_string(vote_key(agent_id, proposal_address))
        rows = await self.query_sql(f"SELECT * FROM votes WHERE vote_key = '{key}' LIMIT 1")
        return bool(rows)

    async def record_vote(
        self,
        agent_id: str,
        proposal_address: str,
        vote: str,
        reasoning: str,
        confidence: float,
        tx_signature: Optional[str] = None,
    ) -> None:
        await self.call_reducer("record_vote", [
            _u64(agent_id),
            proposal_address,
            vote,
            reasoning,
            confidence,
            tx_signature,
            None,
        ])

    async def store_ai_analysis(
        self,
        agent_id: str,
        proposal_address: str,
        analysis: GovernanceAnalysis,
    ) -> None:
        await self.call_reducer("store_ai_analysis", [
            _u64(agent_id),
            proposal_address,
            analysis.model_dump_json(),
            analysis.recommendation.vote.value,
            analysis.recommendation.confidence,
        ])

    async def record_decision(self, decision: VoteDecision, tx_signature: Optional[str] = None) -> None:
        """Ledger entry for an executed vote or a below-threshold abstention."""
        vote = "abstain" if not decision.should_vote else decision.action.to_direction()
        await self.record_vote(
            decision.agent_id,
            decision.proposal_address,
            vote,
            decision.reasoning,
            decision.confidence,
            tx_signature,
        )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
