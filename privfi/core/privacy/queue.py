"""
Phase Queue

Drives privacy swap requests through their phases one external call at a
time. The custodial wallet signs with a strictly ordered nonce, so the
whole queue shares a single in-flight slot and is serviced FIFO: a request
waiting out a retry delay blocks everything behind it.
"""

import asyncio
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    TypeVar,
)

from .errors import (
    CompensationError,
    InvalidSwapRequestError,
    PhaseTimeoutError,
    TradeOutputUnavailableError,
    TransactionRevertedError,
    UnknownOutcomeError,
    classify_error,
)
from .events import EventBus, SwapEventType
from .executor import PhaseExecutor, RedepositResult, SubmittedCallback, TradeResult
from .ledger import DepositLedger
from .models import (
    NEXT_PHASE,
    Deposit,
    DepositStatus,
    FlowPhase,
    PendingSubmission,
    RecoveryRecord,
    RecoveryStatus,
    SwapRequest,
    parse_amount,
)
from .persistence import SwapStore


T = TypeVar("T")

# Called with a snapshot of the request and the compensation error
EscalationCallback = Callable[[SwapRequest, Exception], Awaitable[None]]


@dataclass
class QueueConfig:
    """Timing and retry policy for the phase queue."""

    tick_interval_seconds: float = 1.0
    retry_delay_seconds: float = 5.0
    max_retries: int = 3
    phase_timeout_seconds: Optional[float] = 300.0
    history_limit: int = 500


@dataclass
class QueueStatus:
    length: int
    busy: bool
    head_request_id: Optional[str]
    running: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queueLength": self.length,
            "busy": self.busy,
            "headRequestId": self.head_request_id,
            "running": self.running,
        }


class PhaseQueue:
    """
    Orchestrates the custodial leg of privacy swaps.

    Features:
    - Strictly linear phase advancement (FAILED reachable from any phase)
    - Fixed-delay retries that never block the tick loop
    - Supervisory timeout around every phase call
    - One compensation attempt per failed request, escalated when it fails
    - Bounded history of finished requests for status queries
    """

    def __init__(
        self,
        executor: PhaseExecutor,
        ledger: DepositLedger,
        events: EventBus,
        config: Optional[QueueConfig] = None,
        *,
        store: Optional[SwapStore] = None,
        escalation_callback: Optional[EscalationCallback] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.executor = executor
        self.ledger = ledger
        self.events = events
        self.config = config or QueueConfig()
        self.logger = logger or logging.getLogger(__name__)

        self._store = store
        self._escalation_callback = escalation_callback
        self._clock = clock

        self._queue: Deque[SwapRequest] = deque()
        self._history: "OrderedDict[str, SwapRequest]" = OrderedDict()
        self._orphaned: List[SwapRequest] = []

        self._in_flight = False
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    # ---------------------------
    # Submission and queries
    # ---------------------------
    def enqueue(self, request: SwapRequest) -> SwapRequest:
        """Add a request to the tail of the queue."""
        if request.is_terminal:
            raise InvalidSwapRequestError(f"Request {request.id} is already {request.phase.value}")
        if request.max_retries < 1:
            raise InvalidSwapRequestError("maxRetries must be at least 1", field_name="maxRetries")
        try:
            parse_amount(request.amount)
        except ValueError as exc:
            raise InvalidSwapRequestError(str(exc), field_name="amount") from exc
        if self._find_active(request.id) is not None or request.id in self._history:
            raise InvalidSwapRequestError(f"Request {request.id} already exists", field_name="id")

        # The user's own deposit happened before submission
        if request.phase in (FlowPhase.PENDING, FlowPhase.DEPOSITING):
            request.phase = FlowPhase.WITHDRAWING

        request.touch()
        self._queue.append(request)
        self._save(request)

        self.logger.info(
            "Queued swap %s for %s at %s (queue length %d)",
            request.id,
            request.user_address,
            request.phase.value,
            len(self._queue),
        )
        return request.snapshot()

    def get_by_id(self, request_id: str) -> Optional[SwapRequest]:
        request = self._find_active(request_id) or self._history.get(request_id)
        return request.snapshot() if request else None

    def get_by_owner(self, owner_address: str) -> List[SwapRequest]:
        owner = owner_address.strip().lower()
        matches = [
            r
            for r in [*self._queue, *self._history.values()]
            if r.user_address.lower() == owner
        ]
        return [r.snapshot() for r in sorted(matches, key=lambda r: r.created_at)]

    def queue_status(self) -> QueueStatus:
        head = self._queue[0] if self._queue else None
        return QueueStatus(
            length=len(self._queue),
            busy=self.busy,
            head_request_id=head.id if head else None,
            running=self._running,
        )

    @property
    def busy(self) -> bool:
        """True while a phase call runs or the head request waits out a retry delay."""
        if self._in_flight:
            return True
        return bool(self._queue) and self._queue[0].next_attempt_at is not None

    def orphaned(self) -> List[SwapRequest]:
        """Unfinished requests found in the store from a previous process."""
        return [r.snapshot() for r in self._orphaned]

    def _find_active(self, request_id: str) -> Optional[SwapRequest]:
        for request in self._queue:
            if request.id == request_id:
                return request
        return None

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._load_orphans()
            self._running = True
            self.logger.info(
                "Phase queue starting (tick %.1fs, retry delay %.1fs, max retries %d)",
                self.config.tick_interval_seconds,
                self.config.retry_delay_seconds,
                self.config.max_retries,
            )
            self._loop_task = asyncio.create_task(self._run_loop(), name="phase-queue-loop")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            self.logger.info("Phase queue stopping with %d queued requests", len(self._queue))

            if self._loop_task:
                # Let an in-flight phase call finish; only an idle loop is cancelled
                if not self._in_flight:
                    self._loop_task.cancel()
                try:
                    await self._loop_task
                except asyncio.CancelledError:
                    pass
                self._loop_task = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self) -> None:
        try:
            while self._running:
                try:
                    await self.step()
                except Exception as exc:  # noqa: BLE001
                    self.logger.error("Phase queue step failed: %s", exc, exc_info=True)
                await asyncio.sleep(self.config.tick_interval_seconds)
        except asyncio.CancelledError:
            return

    def _load_orphans(self) -> None:
        if self._store is None:
            return
        known = {r.id for r in self._queue}
        self._orphaned = [
            r for r in self._store.load() if not r.is_terminal and r.id not in known
        ]
        for request in self._orphaned:
            self.logger.warning(
                "Found unfinished swap %s for %s at phase %s from a previous run; "
                "custodial funds may need manual review",
                request.id,
                request.user_address,
                request.phase.value,
            )

    # ---------------------------
    # Driver
    # ---------------------------
    async def step(self) -> bool:
        """
        Perform one driver pass over the head of the queue.

        Returns True when a phase call was made.
        """
        if self._in_flight or not self._queue:
            return False

        request = self._queue[0]

        if request.phase == FlowPhase.READY_TO_WITHDRAW:
            await self._complete(request)
            return False

        if request.next_attempt_at is not None and self._clock() < request.next_attempt_at:
            return False

        self._in_flight = True
        try:
            await self._run_phase(request)
        finally:
            self._in_flight = False
        return True

    async def _run_phase(self, request: SwapRequest) -> None:
        phase = request.phase
        request.next_attempt_at = None

        self.logger.info(
            "Running %s for swap %s (attempt %d/%d)",
            phase.value,
            request.id,
            request.retry_count + 1,
            request.max_retries,
        )

        try:
            result = await self._with_timeout(self._invoke(request, phase), phase.value)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            await self._handle_failure(request, phase, exc)
            return

        # The on-chain effect happened: advance before any bookkeeping can fail
        self._record_success(request, phase, result)
        request.pending_submission = None
        request.phase = NEXT_PHASE[phase]
        request.error = None
        request.touch()

        self._update_ledger(request, phase, result)
        self._save(request)

        self.logger.info("Swap %s advanced %s -> %s", request.id, phase.value, request.phase.value)
        await self.events.publish(SwapEventType.PHASE_COMPLETED, request, phase=phase)
        await self.events.publish(SwapEventType.PHASE_ADVANCED, request, phase=request.phase)

    async def _with_timeout(self, awaitable: Awaitable[T], label: str) -> T:
        timeout = self.config.phase_timeout_seconds
        if not timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            raise PhaseTimeoutError(f"{label} did not finish within {timeout}s", phase=label) from exc

    def _submission_recorder(self, request: SwapRequest, phase: FlowPhase) -> SubmittedCallback:
        def record(tx_ref: str, privacy_data: Optional[Dict[str, Any]] = None) -> None:
            request.pending_submission = PendingSubmission(
                phase=phase, tx_ref=tx_ref, privacy_data=privacy_data
            )
            request.touch()
            self._save(request)

        return record

    async def _invoke(self, request: SwapRequest, phase: FlowPhase) -> Any:
        pending = request.pending_submission
        if pending is not None and pending.phase != phase:
            pending = None
        tracking = {"pending": pending, "on_submitted": self._submission_recorder(request, phase)}

        if phase == FlowPhase.WITHDRAWING:
            return await self.executor.withdraw(
                request.deposit_reference, request.amount, request.privacy_data, **tracking
            )
        if phase == FlowPhase.SWAPPING:
            return await self.executor.trade(
                request.from_token, request.to_token, request.amount, request.slippage_bps, **tracking
            )
        if phase == FlowPhase.REDEPOSITING:
            if request.output_amount is None:
                raise TradeOutputUnavailableError(request.proxy_tx_refs.trade or "", request.to_token)
            return await self.executor.redeposit(
                request.to_token, request.output_amount, request.user_address, **tracking
            )
        raise ValueError(f"No phase call for {phase.value}")

    def _record_success(self, request: SwapRequest, phase: FlowPhase, result: Any) -> None:
        if phase == FlowPhase.WITHDRAWING:
            request.proxy_tx_refs.withdrawal = result
        elif phase == FlowPhase.SWAPPING:
            trade: TradeResult = result
            request.proxy_tx_refs.trade = trade.tx_ref
            request.output_amount = trade.output_amount
        elif phase == FlowPhase.REDEPOSITING:
            redeposit: RedepositResult = result
            request.proxy_tx_refs.redeposit = redeposit.tx_ref
            request.privacy_data = redeposit.privacy_data

    def _update_ledger(self, request: SwapRequest, phase: FlowPhase, result: Any) -> None:
        """Ledger side of a finished phase. Failures here never re-run the phase."""
        try:
            if phase == FlowPhase.WITHDRAWING:
                self._consume_funding_deposit(request)
            elif phase == FlowPhase.REDEPOSITING:
                self._track_custodial_deposit(
                    request, request.to_token, request.output_amount, result
                )
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "Ledger update after %s failed for swap %s: %s",
                phase.value,
                request.id,
                exc,
                exc_info=True,
            )

    def _consume_funding_deposit(self, request: SwapRequest) -> None:
        try:
            consumed = self.ledger.consume(
                request.user_address, request.deposit_reference, request.amount
            )
        except ValueError as exc:
            self.logger.warning("Could not consume funding deposit for swap %s: %s", request.id, exc)
            return
        if consumed is None:
            self.logger.warning(
                "Funding deposit %s for swap %s is not in the ledger",
                request.deposit_reference,
                request.id,
            )

    def _track_custodial_deposit(
        self,
        request: SwapRequest,
        token_address: str,
        amount: str,
        result: RedepositResult,
    ) -> None:
        self.ledger.track(
            Deposit(
                tx_reference=result.tx_ref,
                owner_address=self.executor.wallet_address,
                token_address=token_address,
                amount=amount,
                status=DepositStatus.AVAILABLE,
                privacy_data=result.privacy_data,
                beneficiary_address=request.user_address,
                is_proxy_deposit=True,
            )
        )

    async def _complete(self, request: SwapRequest) -> None:
        self._queue.popleft()
        request.phase = FlowPhase.COMPLETED
        request.touch()
        self._archive(request)
        self._save(request)

        self.logger.info("Swap %s completed for %s", request.id, request.user_address)
        await self.events.publish(SwapEventType.PHASE_ADVANCED, request, phase=FlowPhase.COMPLETED)
        await self.events.publish(SwapEventType.REQUEST_COMPLETED, request)

    # ---------------------------
    # Failure handling
    # ---------------------------
    async def _handle_failure(self, request: SwapRequest, phase: FlowPhase, exc: Exception) -> None:
        context = classify_error(exc)
        request.retry_count += 1
        request.error = str(exc) or type(exc).__name__
        request.touch()

        self.logger.error(
            "Swap %s failed at %s (%s, attempt %d/%d): %s",
            request.id,
            phase.value,
            context.category.value,
            request.retry_count,
            request.max_retries,
            request.error,
        )

        if context.recoverable and request.retry_count < request.max_retries:
            request.next_attempt_at = self._clock() + self.config.retry_delay_seconds
            self._save(request)
            self.logger.info(
                "Retrying %s for swap %s in %.1fs",
                phase.value,
                request.id,
                self.config.retry_delay_seconds,
            )
            await self.events.publish(
                SwapEventType.REQUEST_RETRYING, request, phase=phase, error=request.error
            )
            return

        # A transaction sent for this phase that never confirmed or reverted may still land
        pending = request.pending_submission
        unconfirmed = (
            pending is not None
            and pending.phase == phase
            and not isinstance(exc, TransactionRevertedError)
        )
        unknown_outcome = isinstance(exc, UnknownOutcomeError) or unconfirmed
        outcome_tx_ref = exc.tx_ref if isinstance(exc, UnknownOutcomeError) else None
        if unconfirmed and not outcome_tx_ref:
            outcome_tx_ref = pending.tx_ref

        if unknown_outcome and phase == FlowPhase.SWAPPING and outcome_tx_ref:
            request.proxy_tx_refs.trade = outcome_tx_ref

        request.failed_phase = phase
        request.phase = FlowPhase.FAILED
        self._queue.popleft()
        self._archive(request)

        if unknown_outcome:
            await self._escalate_unknown_outcome(request, exc, outcome_tx_ref)
        else:
            await self._compensate(request)

        self._save(request)
        await self.events.publish(
            SwapEventType.REQUEST_FAILED, request, phase=phase, error=request.error
        )

    async def _escalate_unknown_outcome(
        self, request: SwapRequest, exc: Exception, tx_ref: Optional[str]
    ) -> None:
        """Funds may sit in the custodial wallet in an unknown form; nothing is re-deposited."""
        phase = request.failed_phase
        request.recovery = RecoveryRecord(
            status=RecoveryStatus.FAILED,
            tx_ref=tx_ref,
            error=f"Outcome of {phase.value} unknown: {exc}",
        )
        request.touch()
        self.logger.critical(
            "FUND RECOVERY SKIPPED for swap %s (user %s): %s left funds in an unknown state (tx %s)",
            request.id,
            request.user_address,
            phase.value,
            tx_ref,
        )
        await self.events.publish(
            SwapEventType.FUND_RECOVERY_FAILED,
            request,
            phase=phase,
            error=request.recovery.error,
        )
        await self._escalate(request, exc)

    async def _compensate(self, request: SwapRequest) -> None:
        """Single fund-recovery attempt keyed on the phase that failed."""
        if request.failed_phase == FlowPhase.SWAPPING:
            token_address, amount = request.from_token, request.amount
        elif request.failed_phase == FlowPhase.REDEPOSITING:
            token_address, amount = request.to_token, request.output_amount
        else:
            # Nothing has left the privacy pool yet
            request.recovery = RecoveryRecord(status=RecoveryStatus.NOT_NEEDED)
            self.logger.info("Swap %s failed before withdrawal; no recovery needed", request.id)
            return

        self.logger.info(
            "Recovering %s of %s for swap %s into the privacy pool",
            amount,
            token_address,
            request.id,
        )
        try:
            if amount is None:
                raise TradeOutputUnavailableError(request.proxy_tx_refs.trade or "", token_address)
            result = await self._with_timeout(
                self.executor.redeposit(token_address, amount, request.user_address),
                "compensation",
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            request.recovery = RecoveryRecord(
                status=RecoveryStatus.FAILED,
                token_address=token_address,
                amount=amount,
                error=str(exc) or type(exc).__name__,
            )
            request.touch()
            self.logger.critical(
                "FUND RECOVERY FAILED for swap %s (user %s, %s of %s held by custodial wallet): %s",
                request.id,
                request.user_address,
                amount,
                token_address,
                exc,
                exc_info=True,
            )
            await self.events.publish(
                SwapEventType.FUND_RECOVERY_FAILED,
                request,
                phase=request.failed_phase,
                error=request.recovery.error,
            )
            await self._escalate(request, exc)
            return

        request.privacy_data = result.privacy_data
        request.recovery = RecoveryRecord(
            status=RecoveryStatus.RECOVERED,
            token_address=token_address,
            amount=amount,
            tx_ref=result.tx_ref,
            privacy_data=result.privacy_data,
        )
        request.touch()
        try:
            self._track_custodial_deposit(request, token_address, amount, result)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "Recovered funds for swap %s in %s but could not record them in the ledger: %s",
                request.id,
                result.tx_ref,
                exc,
                exc_info=True,
            )

        self.logger.info("Recovered funds for swap %s in %s", request.id, result.tx_ref)
        await self.events.publish(
            SwapEventType.FUNDS_RECOVERED, request, phase=request.failed_phase
        )

    async def _escalate(self, request: SwapRequest, exc: Exception) -> None:
        if self._escalation_callback is None:
            return
        error = CompensationError(f"Fund recovery failed for swap {request.id}: {exc}", request.id)
        try:
            await self._escalation_callback(request.snapshot(), error)
        except Exception as callback_error:  # noqa: BLE001
            self.logger.error(
                "Escalation callback failed for swap %s: %s",
                request.id,
                callback_error,
                exc_info=True,
            )

    # ---------------------------
    # Bookkeeping
    # ---------------------------
    def _archive(self, request: SwapRequest) -> None:
        self._history[request.id] = request
        while len(self._history) > self.config.history_limit:
            self._history.popitem(last=False)

    def _save(self, request: SwapRequest) -> None:
        if self._store is None:
            return
        try:
            self._store.save(request)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Could not persist swap %s: %s", request.id, exc, exc_info=True)
