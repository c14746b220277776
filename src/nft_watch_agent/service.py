from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal

from .config import Settings
from .email_notifier import EmailNotifier
from .errors import AgentError, ExecutionError, UpstreamApiError, ValidationError
from .executor import ChainExecutor
from .formatting import describe_alternatives, describe_listings, describe_purchase, format_usd
from .marketplace import MarketplaceClient
from .matcher import BidMatcher
from .notifications import NotificationDispatcher, SubscriberRegistry
from .pricing import PriceOracle
from .scheduler import PollingScheduler, TaskResult
from .selector import select_listings
from .settlement import SettlementLoop
from .store import WatchRequestStore
from .telegram_notifier import TelegramNotifier
from .types import ChainId, WatchRequest
from .wallet import LocalKeySigner, Signer

logger = logging.getLogger(__name__)

SETTLEMENT_JOB = "settlement"
HEALTH_JOB = "health"


def build_signers(settings: Settings) -> dict[ChainId, Signer]:
    rpc_urls = {
        ChainId.ARBITRUM: settings.arbitrum_rpc_url,
        ChainId.APECHAIN: settings.apechain_rpc_url,
    }
    signers: dict[ChainId, Signer] = {}
    for chain, rpc_url in rpc_urls.items():
        options = {
            "wait_for_receipt": settings.wait_for_receipt,
            "receipt_timeout": settings.receipt_timeout_seconds,
        }
        if settings.private_key:
            signers[chain] = LocalKeySigner(settings.private_key, rpc_url, chain, **options)
        else:
            signers[chain] = LocalKeySigner.from_mnemonic(settings.mnemonic or "", rpc_url, chain, **options)
    return signers


class WatchAgentService:
    """User-facing operations plus the background settlement job."""

    def __init__(
        self,
        settings: Settings,
        signers: Mapping[ChainId, Signer] | None = None,
        marketplace: MarketplaceClient | None = None,
        oracle: PriceOracle | None = None,
        store: WatchRequestStore | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self.settings = settings
        self.chain = ChainId.APECHAIN
        self.executor = ChainExecutor(signers if signers is not None else build_signers(settings))
        self.marketplace = marketplace or MarketplaceClient(
            settings.marketplace_api_base, chain_slug=settings.marketplace_chain
        )
        self.oracle = oracle or PriceOracle(settings.price_api_base, coin_id=settings.price_coin_id)
        self.store = store or WatchRequestStore(settings.watch_db_path)
        self.subscribers = SubscriberRegistry()
        self.telegram: TelegramNotifier | None = None
        if dispatcher is None:
            dispatcher = self._build_dispatcher()
        self.dispatcher = dispatcher
        self.matcher = BidMatcher(self.marketplace)
        self.settlement = SettlementLoop(
            self.store,
            self.marketplace,
            self.matcher,
            self.executor,
            self.dispatcher,
            chain=self.chain,
            claim_ttl_seconds=settings.settlement_claim_ttl_seconds,
        )
        self.scheduler = PollingScheduler()

    def _build_dispatcher(self) -> NotificationDispatcher:
        s = self.settings
        email = None
        if s.smtp_host and s.smtp_sender:
            email = EmailNotifier(
                s.smtp_host,
                s.smtp_port,
                s.smtp_sender,
                username=s.smtp_username,
                password=s.smtp_password,
                use_tls=s.smtp_use_tls,
            )
        if s.telegram_bot_token and s.telegram_chat_id:
            self.telegram = TelegramNotifier(s.telegram_bot_token, s.telegram_chat_id)
        return NotificationDispatcher(
            registry=self.subscribers, email=email, telegram=self.telegram, chain=self.chain
        )

    async def owner_address(self) -> str:
        return await self.executor.signer_for(self.chain).get_address()

    async def run(self) -> None:
        self.scheduler.schedule(
            SETTLEMENT_JOB, self.settings.settlement_interval_seconds, self.settlement.run_tick
        )
        self.scheduler.schedule(
            HEALTH_JOB, self.settings.health_log_interval_seconds, self._log_health
        )
        try:
            await self.scheduler.wait(SETTLEMENT_JOB)
        finally:
            await self.scheduler.stop()
            await self.close()

    async def close(self) -> None:
        await self.marketplace.close()
        await self.oracle.close()
        if self.telegram is not None:
            await self.telegram.close()
        self.store.close()

    async def _log_health(self) -> TaskResult:
        m = self.settlement.metrics
        logger.info(
            "health ticks=%d skipped=%d settlements=%d settlement_failures=%d notifications=%d sessions=%d",
            m.ticks,
            m.ticks_skipped,
            m.settlements,
            m.settlement_failures,
            m.notifications_sent,
            len(self.subscribers),
        )
        return TaskResult.ok()

    async def search(
        self, collection_name: str, attributes: list[str] | None = None, token_id: str | None = None
    ) -> str:
        listings = await self.marketplace.search_listings(collection_name, attributes, token_id)
        return describe_listings(listings)

    async def buy(
        self,
        collection_name: str,
        budget_usd: Decimal,
        attributes: list[str] | None = None,
        token_id: str | None = None,
    ) -> str:
        listings = await self.marketplace.search_listings(collection_name, attributes, token_id)
        logger.info("Fetched %d listings for %r", len(listings), collection_name)
        if not listings:
            return "No NFTs available for purchase."

        selection = select_listings(listings, budget_usd)
        if not selection.selected:
            return "Budget too low to purchase any NFTs."

        taker = await self.owner_address()
        steps = await self.marketplace.buy_steps(selection.order_ids, taker)
        if steps is None:
            return "Failed to fetch order details."

        try:
            receipt = await self.executor.execute("buyNFT", steps.plans(), self.chain)
        except ExecutionError as exc:
            return f"Purchase failed at step {exc.step} of {exc.total_steps}: {exc.reason}"
        return describe_purchase(selection, receipt, self.chain)

    async def watch(
        self, collection_name: str, floor_price_usd: Decimal, notify_email: str | None = None
    ) -> str:
        owner = await self.owner_address()
        asset_ids = await self.marketplace.fetch_owned_assets(owner, collection_name)
        if not asset_ids:
            return "No matching NFTs found in your wallet."

        request = WatchRequest(
            owner_address=owner,
            collection_name=collection_name,
            floor_price_usd=floor_price_usd,
            asset_ids=asset_ids,
            notify_email=notify_email,
            created_at=datetime.now(timezone.utc),
        )
        self.store.create(request)

        try:
            outcome = await self.settlement.process_request(request)
        except AgentError as exc:
            logger.warning("Immediate attempt for %s failed: %s", request.id, exc)
            return (
                f"Watching {len(asset_ids)} NFT(s) in {collection_name} for bids of at least "
                f"{format_usd(floor_price_usd)}. The first attempt failed and will be retried."
            )

        if outcome.matched:
            await self.settlement.notify_matched()
            return (
                f"Accepted a {format_usd(outcome.amount_usd)} bid for {outcome.bid.asset_id}. "
                f"Transaction: {outcome.receipt}"
            )
        if outcome.skipped:
            return (
                f"Watching {len(asset_ids)} NFT(s) in {collection_name} for bids of at least "
                f"{format_usd(floor_price_usd)}. A settlement attempt is already running."
            )
        return (
            f"Watching {len(asset_ids)} NFT(s) in {collection_name} for bids of at least "
            f"{format_usd(floor_price_usd)}.\n{describe_alternatives(outcome.ranked_bids)}"
        )

    async def place_offer(
        self,
        collection_name: str,
        amount_usd: Decimal,
        attributes: list[str] | None = None,
        token_id: str | None = None,
    ) -> str:
        listings = await self.marketplace.search_listings(collection_name, attributes, token_id)
        if not listings:
            return "No listings found for given attributes."

        try:
            wei_price = await self.oracle.usd_to_wei(amount_usd)
            signer = self.executor.signer_for(self.chain)
            maker = await signer.get_address()
            step = await self.marketplace.bid_signature_step(
                maker, wei_price, self.settings.bid_currency_address, listings[0].asset_id
            )
            sign = step["sign"]
            if not all(isinstance(sign.get(k), dict) for k in ("domain", "types", "value")):
                raise ValidationError("Signature step is missing typed-data fields")
            signature = await signer.sign_typed_data(sign["domain"], sign["types"], sign["value"])
            await self.marketplace.post_signed_order(step["post"].get("body") or {}, signature)
        except (UpstreamApiError, ValidationError, ExecutionError) as exc:
            logger.error("Placing offer on %s failed: %s", collection_name, exc)
            return f"Error placing bid: {exc}"

        logger.info("Offer of %s placed on %s", format_usd(amount_usd), listings[0].asset_id)
        return "Order placed successfully!"
