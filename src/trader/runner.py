import argparse
import asyncio
import logging
import os
import signal
from decimal import Decimal

from src.exchange.paper import PaperExchange
from src.ports.exchange import ExchangeClient
from src.trader.cycle import CycleController
from src.utils.config_loader import load_config, load_secrets

logger = logging.getLogger(__name__)


def build_exchange(config: dict) -> ExchangeClient:
    """Construct the exchange adapter selected by `exchange.adapter`."""
    exchange_cfg = config.get("exchange", {}) or {}
    adapter = exchange_cfg.get("adapter", "paper")
    market_id = str(exchange_cfg["market_id"])

    if adapter == "paper":
        return PaperExchange.from_config(config.get("paper", {}) or {}, market_id)

    if adapter == "ccxt":
        # Imported lazily so paper runs do not pay for loading ccxt.
        from src.exchange.ccxt_client import CcxtExchange

        api_key = os.getenv("PAIRCYCLER_API_KEY", "")
        api_secret = os.getenv("PAIRCYCLER_API_SECRET", "")
        if not api_key or not api_secret:
            logger.warning("PAIRCYCLER_API_KEY / PAIRCYCLER_API_SECRET not set; private endpoints will fail")
        return CcxtExchange(
            str(exchange_cfg["id"]),
            api_key=api_key,
            api_secret=api_secret,
            sandbox=config.get("mode", "development") == "development",
        )

    raise ValueError(f"Unsupported exchange adapter: {adapter}")


def build_controller(config: dict, exchange: ExchangeClient) -> CycleController:
    trading = config.get("trading", {}) or {}
    max_wait = trading.get("max_wait_seconds")
    return CycleController(
        exchange,
        str(config["exchange"]["market_id"]),
        limit_price=Decimal(str(trading.get("limit_price", 0.9999))),
        poll_interval_ms=int(trading.get("poll_interval_ms", 5000)),
        max_wait_seconds=float(max_wait) if max_wait is not None else None,
        failure_backoff_seconds=float(trading.get("failure_backoff_seconds", 5)),
    )


async def run_bot(config: dict, max_cycles: int | None = None) -> None:
    exchange = build_exchange(config)
    controller = build_controller(config, exchange)

    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
    except (NotImplementedError, RuntimeError):
        # add_signal_handler is unavailable on some platforms and outside the main thread.
        pass

    try:
        await controller.start()
        logger.info(
            "Connected (%s, mode=%s), market %s",
            config["exchange"].get("adapter", "paper"),
            config.get("mode", "development"),
            controller.market_id,
        )
        await controller.run(max_cycles=max_cycles)
    finally:
        await exchange.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cycle a token pair between buy and sell orders.")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: config/config.yaml).")
    parser.add_argument("--cycles", type=int, default=None, help="Stop after this many cycles (default: run forever).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        logger.error("Invalid configuration: %s", e)
        return 2

    # Configure logging (idempotent; safe if configured elsewhere).
    level = str((config.get("logging", {}) or {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting bot....")
    load_secrets(config.get("mode", "development"))

    try:
        asyncio.run(run_bot(config, max_cycles=args.cycles))
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutdown requested; exiting.")
        return 0
    except Exception:
        logger.exception("Fatal error in trading loop")
        return 1
    return 0
