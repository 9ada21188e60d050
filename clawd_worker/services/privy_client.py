"""
Privy agentic wallet client.

Privy holds the agent signing keys and enforces spending policies on its
side. The app secret is never logged.
"""
import base64
import logging
from typing import Any, Dict, Optional

import httpx

from ..config import WorkerConfig

logger = logging.getLogger("clawd_worker.services.privy_client")


class PrivyApiError(Exception):
    """Non-2xx or transport failure talking to Privy."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Privy API error {status_code}: {message}" if status_code else message)


class PrivyWalletClient:
    """Thin async client for the Privy wallet RPC endpoint."""

    def __init__(self, cfg: WorkerConfig, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        self.base_url = cfg.privy_api_url.rstrip("/")
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    def is_configured(self) -> bool:
        return self.cfg.privy_configured()

    def _headers(self) -> Dict[str, str]:
        credentials = f"{self.cfg.privy_app_id}:{self.cfg.privy_app_secret}"
        token = base64.b64encode(credentials.encode()).decode()
        return {
            "Authorization": f"Basic {token}",
            "privy-app-id": self.cfg.privy_app_id,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        if not self.is_configured():
            raise PrivyApiError("Privy credentials not configured")
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self.client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise PrivyApiError(f"{type(e).__name__}: {e}") from e
        if response.status_code >= 400:
            raise PrivyApiError(response.text, status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise PrivyApiError(f"Invalid JSON from Privy: {e}", status_code=response.status_code) from e

    async def sign_and_send(self, wallet_id: str, serialized_transaction: str) -> Optional[str]:
        """
        Have Privy sign a base64 unsigned Solana transaction and broadcast it.

        Returns:
            Transaction hash reported by Privy, or None when a 2xx response
            carried no hash (the transaction was still accepted)
        """
        payload = {
            "method": "solana_signAndSendTransaction",
            "caip2": self.cfg.solana_caip2,
            "params": {
                "transaction": serialized_transaction,
                "encoding": "base64",
            },
        }
        result = await self._request("POST", f"/wallets/{wallet_id}/rpc", json=payload)
        if not isinstance(result, dict):
            logger.warning(f"Privy accepted transaction for wallet {wallet_id} with a non-object body")
            return None
        data = result.get("data") if isinstance(result.get("data"), dict) else result
        tx_hash = data.get("hash") or data.get("signature") or data.get("tx_hash")
        if not tx_hash:
            logger.warning(f"Privy accepted transaction for wallet {wallet_id} but returned no hash")
            return None
        return tx_hash

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
