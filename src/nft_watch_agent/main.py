from __future__ import annotations

import argparse
import asyncio
import logging
from decimal import Decimal

from .config import load_settings
from .service import WatchAgentService


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nft-watch-agent")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="run the settlement loop until interrupted")

    search = sub.add_parser("search", help="list NFTs for sale in a collection")
    search.add_argument("collection")
    search.add_argument("--attribute", action="append", dest="attributes")
    search.add_argument("--token-id")

    buy = sub.add_parser("buy", help="buy the cheapest NFTs that fit a USD budget")
    buy.add_argument("collection")
    buy.add_argument("budget", type=Decimal)
    buy.add_argument("--attribute", action="append", dest="attributes")
    buy.add_argument("--token-id")

    watch = sub.add_parser("watch", help="auto-accept bids at or above a USD floor")
    watch.add_argument("collection")
    watch.add_argument("floor", type=Decimal)
    watch.add_argument("--email")

    offer = sub.add_parser("offer", help="place a USD-denominated offer")
    offer.add_argument("collection")
    offer.add_argument("amount", type=Decimal)
    offer.add_argument("--attribute", action="append", dest="attributes")
    offer.add_argument("--token-id")
    return parser


async def _main(args: argparse.Namespace) -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    service = WatchAgentService(settings)

    if args.command in (None, "run"):
        await service.run()
        return

    try:
        if args.command == "search":
            text = await service.search(args.collection, args.attributes, args.token_id)
        elif args.command == "buy":
            text = await service.buy(args.collection, args.budget, args.attributes, args.token_id)
        elif args.command == "watch":
            text = await service.watch(args.collection, args.floor, args.email)
        else:
            text = await service.place_offer(args.collection, args.amount, args.attributes, args.token_id)
        print(text)
    finally:
        await service.close()


def main() -> None:
    args = build_parser().parse_args()
    try:
        asyncio.run(_main(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
