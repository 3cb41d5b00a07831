"""HTTP client for the privacy-pool SDK bridge.

The pool's SDK generates secret/nullifier material and the calls that use it.
It runs as a sidecar service; this client only forwards requests and never
inspects the privacy data it carries.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.privacy.errors import ProviderUnavailableError
from .base import Call, DepositCalls, PrivacyPoolProvider


class PrivacyPoolBridge(PrivacyPoolProvider):
    """Calls the bridge's /deposit-calls and /withdrawal-calls endpoints."""

    name = "privacy_pool"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.privacy_pool_url).rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.base_url:
            raise ProviderUnavailableError("Privacy pool bridge URL is not configured", provider=self.name)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException:
            raise
        except httpx.RequestError as exc:
            raise ProviderUnavailableError(f"Privacy pool bridge unreachable: {exc}", provider=self.name) from exc

    @staticmethod
    def _calls(data: Dict[str, Any]) -> List[Call]:
        calls = data.get("calls")
        if not isinstance(calls, list) or not calls:
            raise ValueError("Privacy pool bridge returned no calls")
        return [Call.from_dict(c) for c in calls]

    async def build_deposit(self, token_address: str, amount: int, depositor: str) -> DepositCalls:
        data = await self._post(
            "/deposit-calls",
            {"tokenAddress": token_address, "amount": str(amount), "depositor": depositor},
        )
        privacy_data = data.get("privacyData")
        if not privacy_data:
            raise ValueError("Privacy pool bridge returned no privacy data for deposit")
        return DepositCalls(calls=self._calls(data), privacy_data=privacy_data)

    async def build_withdrawal(
        self,
        deposit_reference: str,
        privacy_data: Dict[str, Any],
        recipient: str,
    ) -> List[Call]:
        data = await self._post(
            "/withdrawal-calls",
            {
                "depositReference": deposit_reference,
                "privacyData": privacy_data,
                "recipient": recipient,
            },
        )
        return self._calls(data)
