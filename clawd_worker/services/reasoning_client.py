"""
Reasoning collaborator client - OpenAI-compatible chat completions.

The analysis itself is opaque to the worker: the response is parsed and
strictly validated into a GovernanceAnalysis, or rejected.
"""
import asyncio
import json
import logging
import re
from typing import Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from ..config import WorkerConfig
from ..resilience import CircuitBreaker, RetryConfig, get_circuit_breaker, with_retry
from ..schemas import GovernanceAnalysis, Proposal

logger = logging.getLogger("clawd_worker.services.reasoning_client")

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

ANALYSIS_SYSTEM_PROMPT = """You are an AI governance analyst for Solana DAOs. Analyze proposals objectively and provide structured recommendations.
{agent_values}
Your analysis should consider treasury impact, security risks, centralization risks, and alignment with the DAO's mission.
Respond with valid JSON matching the required schema."""

ANALYSIS_USER_PROMPT = """Analyze this governance proposal:

**DAO**: {realm_name}
**Title**: {title}
**Description**: {description}
**Current Votes**: {for_votes} FOR / {against_votes} AGAINST / {abstain_votes} ABSTAIN

Provide your analysis as JSON with: summary, risk_assessment (treasury_impact, security_risk, centralization_risk, overall_risk_score 0-100), recommendation (vote FOR/AGAINST/ABSTAIN, confidence 0-1, reasoning, conditions array)."""


class ReasoningResponseError(Exception):
    """Reasoning service answered, but not with a valid analysis."""


def extract_json(text: str) -> dict:
    """Pull a JSON object out of a completion, tolerating markdown code fences."""
    match = CODE_FENCE_RE.search(text)
    body = match.group(1) if match else text
    try:
        parsed = json.loads(body.strip())
    except ValueError as e:
        raise ReasoningResponseError(f"Response is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ReasoningResponseError("Response JSON is not an object")
    return parsed


def parse_analysis(raw: dict) -> GovernanceAnalysis:
    try:
        return GovernanceAnalysis.model_validate(raw)
    except ValidationError as e:
        raise ReasoningResponseError(f"Response failed schema validation: {e.error_count()} error(s)") from e


class ReasoningClient:
    """Asks the reasoning service for a structured vote recommendation."""

    def __init__(
        self,
        cfg: WorkerConfig,
        client: Optional[AsyncOpenAI] = None,
        circuit: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.cfg = cfg
        self.client = client or AsyncOpenAI(
            api_key=cfg.reasoning_api_key or "placeholder",
            base_url=cfg.reasoning_base_url,
            max_retries=0,
        )
        self.circuit = circuit or get_circuit_breaker(
            "reasoning",
            reachable_errors=(ReasoningResponseError,),
        )
        self.retry_config = retry_config or RetryConfig(
            retryable_exceptions=(
                openai.APIConnectionError,
                openai.RateLimitError,
                openai.InternalServerError,
                asyncio.TimeoutError,
            ),
        )

    def _build_messages(self, proposal: Proposal, agent_values: str) -> list[dict]:
        system = ANALYSIS_SYSTEM_PROMPT.format(
            agent_values=f"\nAgent values/priorities: {agent_values}" if agent_values else ""
        )
        user = ANALYSIS_USER_PROMPT.format(
            realm_name=proposal.realm_name,
            title=proposal.title,
            description=proposal.description,
            for_votes=proposal.for_votes,
            against_votes=proposal.against_votes,
            abstain_votes=proposal.abstain_votes,
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    async def _complete(self, messages: list[dict]) -> GovernanceAnalysis:
        response = await self.client.chat.completions.create(
            model=self.cfg.reasoning_model,
            max_tokens=self.cfg.reasoning_max_tokens,
            messages=messages,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ReasoningResponseError("Empty response from reasoning service")
        return parse_analysis(extract_json(content))

    async def analyze_proposal(self, proposal: Proposal, agent_values: str = "") -> GovernanceAnalysis:
        """
        Analyze one proposal from the perspective of an agent's values.

        Raises:
            CircuitBreakerOpen: reasoning service considered down
            ReasoningResponseError: invalid or unparseable response
            openai.OpenAIError: transport/API errors after retries
        """
        messages = self._build_messages(proposal, agent_values)
        analysis = await with_retry(
            lambda: self._complete(messages),
            circuit=self.circuit,
            config=self.retry_config,
        )
        logger.debug(
            f"Analysis for {proposal.address}: {analysis.recommendation.vote.value} "
            f"({analysis.recommendation.confidence:.2f})"
        )
        return analysis
