from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from .errors import AgentError, ExecutionError, PersistenceError
from .executor import ChainExecutor
from .marketplace import MarketplaceClient
from .matcher import BidMatcher
from .notifications import NotificationDispatcher
from .scheduler import TaskResult
from .store import WatchRequestStore
from .types import ChainId, SettlementOutcome, SettlementSteps, WatchRequest

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    pending: int = 0
    matched: int = 0
    unmatched: int = 0
    failed: int = 0
    skipped: int = 0
    notified: int = 0

    def summary(self) -> str:
        return (
            f"pending={self.pending} matched={self.matched} unmatched={self.unmatched} "
            f"failed={self.failed} skipped={self.skipped} notified={self.notified}"
        )


@dataclass
class Metrics:
    ticks: int = 0
    ticks_skipped: int = 0
    settlements: int = 0
    settlement_failures: int = 0
    notifications_sent: int = 0


class SettlementLoop:
    """One pass over every pending watch request.

    PENDING requests are matched against current bids and settled on chain;
    settled requests move to MATCHED through ``record_match`` and to
    NOTIFIED once a notification channel confirms delivery.
    """

    def __init__(
        self,
        store: WatchRequestStore,
        marketplace: MarketplaceClient,
        matcher: BidMatcher,
        executor: ChainExecutor,
        dispatcher: NotificationDispatcher,
        chain: ChainId = ChainId.APECHAIN,
        claim_ttl_seconds: float = 900.0,
    ) -> None:
        self.store = store
        self.marketplace = marketplace
        self.matcher = matcher
        self.executor = executor
        self.dispatcher = dispatcher
        self.chain = chain
        self.claim_ttl_seconds = claim_ttl_seconds
        self.worker_id = uuid.uuid4().hex
        self.metrics = Metrics()
        self._tick_lock = asyncio.Lock()

    async def run_tick(self) -> TaskResult:
        if self._tick_lock.locked():
            self.metrics.ticks_skipped += 1
            return TaskResult.retryable("previous tick still running")

        async with self._tick_lock:
            self.metrics.ticks += 1
            try:
                pending = self.store.list_pending()
            except PersistenceError as exc:
                return TaskResult.retryable(str(exc))

            report = TickReport(pending=len(pending))
            for request in pending:
                try:
                    outcome = await self.process_request(request)
                except Exception as exc:
                    report.failed += 1
                    logger.exception("Watch request %s failed this tick: %s", request.id, exc)
                    continue
                if outcome.skipped:
                    report.skipped += 1
                elif outcome.matched:
                    report.matched += 1
                else:
                    report.unmatched += 1

            report.notified = await self.notify_matched()
            logger.info("Settlement tick %s", report.summary())
            return TaskResult.ok(report.summary())

    async def process_request(self, request: WatchRequest) -> SettlementOutcome:
        """Try to settle one request. Raises on settlement or store failure.

        The request is claimed in the store for the whole attempt, so a tick
        and an immediate ``watch`` attempt (or another process on the same
        database) never settle it twice. A request claimed elsewhere comes
        back as a skipped non-match.
        """
        current = self.store.get(request.id)
        if current is None:
            raise PersistenceError(f"Watch request {request.id} disappeared")
        if current.is_offer_accepted:
            logger.debug("Request %s already accepted; skipping", request.id)
            return SettlementOutcome(matched=False, ranked_bids=[], skipped=True)
        if not self.store.claim(current.id, self.worker_id, self.claim_ttl_seconds):
            logger.info("Request %s is being settled elsewhere; skipping", current.id)
            return SettlementOutcome(matched=False, ranked_bids=[], skipped=True)

        try:
            return await self._attempt(current)
        finally:
            try:
                self.store.release(current.id, self.worker_id)
            except PersistenceError as exc:
                logger.error("Claim on %s not released, it expires on its own: %s", current.id, exc)

    async def _attempt(self, current: WatchRequest) -> SettlementOutcome:
        bids = await self.marketplace.fetch_bids(current.asset_ids)
        outcome = await self.matcher.match(bids, current.floor_price_usd, current.owner_address)
        if not outcome.matched or outcome.steps is None or outcome.bid is None:
            logger.info(
                "No bid at or above $%s for request %s (%d bids seen)",
                current.floor_price_usd,
                current.id,
                len(outcome.ranked_bids),
            )
            return outcome

        receipt = await self._settle(current, outcome.steps)
        if self.store.record_match(current.id, outcome.bid.maker_address, outcome.bid.price_usd, receipt):
            self.metrics.settlements += 1
        else:
            logger.error(
                "Sold %s to bid %s (tx %s) but request %s was already resolved; settlement not recorded",
                outcome.bid.asset_id,
                outcome.bid.bid_id,
                receipt,
                current.id,
            )
        return SettlementOutcome(
            matched=True,
            ranked_bids=outcome.ranked_bids,
            bid=outcome.bid,
            steps=outcome.steps,
            receipt=receipt,
        )

    async def _settle(self, request: WatchRequest, steps: SettlementSteps) -> str:
        try:
            if steps.approval is not None:
                await self.executor.execute("approve", [steps.approval], self.chain)
            return await self.executor.execute("acceptBid", [steps.sale], self.chain)
        except ExecutionError as exc:
            self.metrics.settlement_failures += 1
            logger.error("Settlement for request %s stopped at %s; left pending", request.id, exc)
            raise

    async def notify_matched(self) -> int:
        try:
            matched = self.store.list_unnotified()
        except PersistenceError as exc:
            logger.error("Cannot load matched requests for notification: %s", exc)
            return 0

        sent = 0
        for request in matched:
            if not await self.dispatcher.notify(request):
                continue
            try:
                if self.store.mark_notified(request.id):
                    sent += 1
                    self.metrics.notifications_sent += 1
            except AgentError as exc:
                logger.error("Notified request %s but could not record it: %s", request.id, exc)
        return sent
