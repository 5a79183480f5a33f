"""EngulfTrade — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
paper and live modes.
"""

import logging

from fastapi import FastAPI

from engulftrade.api.routers import router

app = FastAPI(title="EngulfTrade Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("engulftrade")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


def build_engine(config):
    """Wire the OANDA collaborators into a ``TradingEngine``."""
    from engulftrade.broker.oanda_client import OandaClient
    from engulftrade.broker.oanda_gateway import OandaAccount, OandaBroker, OandaPriceFeed
    from engulftrade.engine import TradingEngine
    from engulftrade.strategy.indicator_service import CandleIndicatorService

    client = OandaClient(config)
    feed = OandaPriceFeed(client, config)
    return TradingEngine(
        config=config,
        broker=OandaBroker(client, config),
        account=OandaAccount(client),
        feed=feed,
        indicators=CandleIndicatorService(feed, config),
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and start the engine."""
    import argparse
    import asyncio
    import signal
    import time

    from engulftrade.config import load_config

    parser = argparse.ArgumentParser(description="EngulfTrade trading bot")
    parser.add_argument(
        "--mode",
        choices=["paper", "live"],
        default="paper",
        help="Trading mode (default: paper)",
    )
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the trading engine without the API server",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=0,
        help="Stop after this many ticks (0 = run until stopped)",
    )
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "live" and config.oanda_environment != "live":
        logger.warning("--mode live with OANDA_ENVIRONMENT=%s", config.oanda_environment)
    if warn_if_live(args.mode):
        time.sleep(5)

    engine = build_engine(config)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    if args.engine_only:
        asyncio.run(_run_engine_only(engine, args.max_cycles))
    else:
        asyncio.run(_run_with_api(engine, config.health_port, args.max_cycles))


async def _run_engine_only(engine, max_cycles: int) -> None:
    logger.info("Starting EngulfTrade engine (no API) for %s", engine.stream_name)
    await engine.run(max_cycles=max_cycles)
    logger.info("EngulfTrade engine stopped.")


async def _run_with_api(engine, port: int, max_cycles: int) -> None:
    """Start the API server and the trading engine concurrently."""
    import asyncio

    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_engine():
        try:
            await engine.run(max_cycles=max_cycles)
        finally:
            server.should_exit = True

    logger.info("Status API available at http://localhost:%d/status", port)
    results = await asyncio.gather(
        server.serve(),
        _run_engine(),
        return_exceptions=True,
    )
    logger.info("EngulfTrade stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()
