"""Async client for the AVNU swap aggregator on Starknet."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.privacy.errors import ProviderUnavailableError
from .base import Call, Route, TradeRouter


def _to_int(value: Any) -> int:
    """AVNU reports amounts as hex strings."""
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.lower().startswith("0x") else int(text)


class AvnuRouter(TradeRouter):
    """Thin wrapper around the AVNU /swap/v2 endpoints."""

    name = "avnu"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        integrator_name: Optional[str] = None,
        integrator_fee_recipient: Optional[str] = None,
        integrator_fee_bps: Optional[int] = None,
        timeout_s: int = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.avnu_api_url).rstrip("/")
        self.integrator_name = integrator_name or settings.avnu_integrator_name
        self.integrator_fee_recipient = integrator_fee_recipient or settings.avnu_integrator_fee_recipient
        self.integrator_fee_bps = (
            integrator_fee_bps if integrator_fee_bps is not None else settings.avnu_integrator_fee_bps
        )
        self.timeout_s = timeout_s
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response
        except httpx.TimeoutException:
            raise
        except httpx.RequestError as exc:
            raise ProviderUnavailableError(f"AVNU unreachable: {exc}", provider=self.name) from exc

    async def get_quotes(
        self,
        sell_token: str,
        buy_token: str,
        sell_amount: int,
        taker: Optional[str] = None,
        size: int = 3,
    ) -> List[Dict[str, Any]]:
        params = {
            "sellTokenAddress": sell_token,
            "buyTokenAddress": buy_token,
            "sellAmount": hex(sell_amount),
            "size": str(size),
            "integratorName": self.integrator_name,
            "integratorFeeRecipient": self.integrator_fee_recipient,
            "integratorFees": hex(self.integrator_fee_bps),
        }
        if taker:
            params["takerAddress"] = taker

        resp = await self._request("GET", "/swap/v2/quotes", params=params)
        data = resp.json()
        return data if isinstance(data, list) else []

    async def best_route(
        self,
        sell_token: str,
        buy_token: str,
        sell_amount: int,
        taker: str,
    ) -> Optional[Route]:
        quotes = await self.get_quotes(sell_token, buy_token, sell_amount, taker)
        if not quotes:
            return None

        # AVNU returns quotes best first
        best = quotes[0]
        return Route(
            quote_id=best["quoteId"],
            sell_token=best.get("sellTokenAddress", sell_token),
            buy_token=best.get("buyTokenAddress", buy_token),
            sell_amount=_to_int(best.get("sellAmount", sell_amount)),
            buy_amount=_to_int(best.get("buyAmount", 0)),
            raw=best,
        )

    async def build_calls(self, route: Route, slippage_bps: int, taker: str) -> List[Call]:
        payload = {
            "quoteId": route.quote_id,
            "takerAddress": taker,
            "slippage": slippage_bps / 10_000,
            "includeApprove": True,
        }
        resp = await self._request("POST", "/swap/v2/build", json=payload)
        calls = resp.json().get("calls")
        if not isinstance(calls, list) or not calls:
            raise ValueError("Invalid AVNU build response: missing calls array")
        return [Call.from_dict(c) for c in calls]
