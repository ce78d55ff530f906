"""Command-line entry point.

Usage:
    dex-buy-tracker run [--dry-run]
    dex-buy-tracker preview GROUP_ID [--usd 1000] [--send]
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from decimal import Decimal, InvalidOperation

import httpx

from dex_buy_tracker.alerter.dispatcher import AlertDispatcher, select_media
from dex_buy_tracker.alerter.formatter import AlertFormatter
from dex_buy_tracker.alerter.gateway import TelegramGateway
from dex_buy_tracker.alerter.preview import build_sample_alert
from dex_buy_tracker.config import Settings, get_settings
from dex_buy_tracker.groups import GroupConfigError, GroupConfigStore
from dex_buy_tracker.market.dexscreener import DexScreenerClient
from dex_buy_tracker.market.http import MarketDataError
from dex_buy_tracker.market.models import PairInfo
from dex_buy_tracker.market.prices import NativePriceClient
from dex_buy_tracker.pipeline import Pipeline

logger = logging.getLogger("dex_buy_tracker")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _decimal_arg(value: str) -> Decimal:
    try:
        result = Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from e
    if result <= 0:
        raise argparse.ArgumentTypeError("must be positive")
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dex-buy-tracker",
        description="Watch DEX pools for buys and post alerts to Telegram groups.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run the tracker until interrupted")
    run.add_argument("--dry-run", action="store_true", help="Log alerts instead of sending")

    preview = commands.add_parser("preview", help="Render a sample alert for a group")
    preview.add_argument("group_id", help="Group id as configured in the groups file")
    preview.add_argument(
        "--usd",
        type=_decimal_arg,
        default=Decimal("1000"),
        help="USD size of the sample buy (default: 1000)",
    )
    preview.add_argument("--send", action="store_true", help="Also send the sample to the group")
    return parser


async def _preview(settings: Settings, group_id: str, usd_value: Decimal, send: bool) -> int:
    store = GroupConfigStore.load(settings.groups_file)
    config = store.get(group_id)
    if config is None:
        print(f"Unknown group: {group_id}", file=sys.stderr)
        return 2

    async with httpx.AsyncClient(timeout=settings.tracker.request_timeout_seconds) as http:
        market = DexScreenerClient(http, base_url=settings.market_data.dexscreener_url)
        prices = NativePriceClient(
            settings.chains, http, base_url=settings.market_data.price_api_url
        )
        try:
            pair = await market.get_pair_info(config.chain, config.pair_address, config.token_address)
        except MarketDataError as e:
            logger.warning("Pair info unavailable, using defaults: %s", e)
            pair = PairInfo.empty(config.pair_address)
        native_price = await prices.get_native_price_usd(config.chain)

    alert = build_sample_alert(config, usd_value=usd_value, native_price_usd=native_price, pair=pair)
    formatter = AlertFormatter(settings.chains, settings.alert)
    formatted = formatter.format(alert, config)
    print(formatted.plain_text)

    if not send:
        return 0

    token = settings.telegram.bot_token
    if token is None:
        print("TELEGRAM_BOT_TOKEN is required to send a preview", file=sys.stderr)
        return 2

    gateway = TelegramGateway.from_token(token.get_secret_value())
    await gateway.start()
    try:
        dispatcher = AlertDispatcher(formatter, gateway)
        ok = await dispatcher.deliver(group_id, formatted, select_media(config))
    finally:
        await gateway.aclose()
    return 0 if ok else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.get_logging_level(), format=LOG_FORMAT)

    if getattr(args, "dry_run", False):
        settings = settings.model_copy(update={"dry_run": True})

    try:
        settings.validate_requirements(command=args.command)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logger.info("Settings: %s", settings.redacted_summary())

    try:
        if args.command == "preview":
            return asyncio.run(_preview(settings, args.group_id, args.usd, args.send))

        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(Pipeline(settings).run())
    except GroupConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
