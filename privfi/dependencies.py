"""
Service graph construction.

Every service is built once at process start and handed to its consumers;
FastAPI routes reach them through `app.state.services`.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional

import structlog
from fastapi import Request

from .config import Settings, settings as default_settings
from .core.privacy import (
    DepositLedger,
    EscalationCallback,
    EventBus,
    JsonFileDepositStore,
    JsonFileSwapStore,
    PhaseExecutor,
    PhaseQueue,
    SwapIntake,
    SwapRequest,
)
from .providers.avnu import AvnuRouter
from .providers.base import PrivacyPoolProvider, TradeRouter, WalletGateway
from .providers.privacy_pool import PrivacyPoolBridge
from .providers.starknet import StarknetWalletGateway

logger = logging.getLogger("privfi.retention")
escalation_logger = structlog.stdlib.get_logger("escalation")


async def log_escalation(request: SwapRequest, error: Exception) -> None:
    """Default escalation hook: a structured CRITICAL record operators can alert on."""
    escalation_logger.critical(
        "fund_recovery_failed",
        swap_id=request.id,
        user_address=request.user_address,
        failed_phase=request.failed_phase.value if request.failed_phase else None,
        recovery=request.recovery.to_dict() if request.recovery else None,
        error=str(error),
    )


@dataclass
class Services:
    ledger: DepositLedger
    events: EventBus
    executor: PhaseExecutor
    queue: PhaseQueue
    intake: SwapIntake
    deposit_store: Optional[JsonFileDepositStore] = None
    swap_store: Optional[JsonFileSwapStore] = None


def build_services(
    config: Optional[Settings] = None,
    *,
    privacy_pool: Optional[PrivacyPoolProvider] = None,
    router: Optional[TradeRouter] = None,
    wallet: Optional[WalletGateway] = None,
    escalation_callback: Optional[EscalationCallback] = None,
) -> Services:
    """Wire the ledger, executor, event bus, queue and intake together."""
    config = config or default_settings

    deposit_store = swap_store = None
    if config.persist_state:
        deposit_store = JsonFileDepositStore(config.data_dir / "deposits.json")
        swap_store = JsonFileSwapStore(config.data_dir / "swaps.json")

    ledger = DepositLedger(store=deposit_store, logger=logging.getLogger("privfi.ledger"))
    events = EventBus()
    executor = PhaseExecutor(
        privacy_pool=privacy_pool or PrivacyPoolBridge(base_url=config.privacy_pool_url),
        router=router
        or AvnuRouter(
            base_url=config.avnu_api_url,
            integrator_name=config.avnu_integrator_name,
            integrator_fee_recipient=config.avnu_integrator_fee_recipient,
            integrator_fee_bps=config.avnu_integrator_fee_bps,
        ),
        wallet=wallet
        or StarknetWalletGateway(
            address=config.proxy_wallet_address,
            signer_url=config.signer_url,
            rpc_url=config.starknet_rpc_url,
            poll_interval_s=config.tx_poll_interval_seconds,
            confirmation_timeout_s=config.tx_confirmation_timeout_seconds,
        ),
    )
    queue = PhaseQueue(
        executor,
        ledger,
        events,
        config.queue_config(),
        store=swap_store,
        escalation_callback=escalation_callback or log_escalation,
        logger=logging.getLogger("privfi.queue"),
    )
    intake = SwapIntake(
        ledger,
        queue,
        pending_match_window=timedelta(seconds=config.pending_deposit_match_window_seconds),
    )

    return Services(
        ledger=ledger,
        events=events,
        executor=executor,
        queue=queue,
        intake=intake,
        deposit_store=deposit_store,
        swap_store=swap_store,
    )


def prune_expired(services: Services, max_age: timedelta) -> Dict[str, int]:
    """Apply the retention policy to the ledger and the swap store."""
    removed = {"deposits": services.ledger.prune(max_age), "swaps": 0}
    if services.swap_store is not None:
        removed["swaps"] = services.swap_store.prune(max_age)
    return removed


async def run_retention(services: Services, max_age: timedelta, interval_s: float) -> None:
    """Prune expired records now and then every `interval_s` seconds until cancelled."""
    while True:
        try:
            removed = prune_expired(services, max_age)
            if any(removed.values()):
                logger.info("Retention sweep removed %s", removed)
        except Exception as exc:  # noqa: BLE001
            logger.error("Retention sweep failed: %s", exc, exc_info=True)
        await asyncio.sleep(interval_s)


def get_services(request: Request) -> Services:
    return request.app.state.services
