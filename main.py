"""
Main entry point for post-buy enrichment.
Supports modes:
  --address "...": Enrich one address and print the JSON report
  --monitor: Watch offer_decision and enrich properties that move to BUY
  --web: Start the HTTP wrapper
"""
import argparse
import asyncio
import json
import sys

from loguru import logger

from postbuy.config import HOUSECANARY_KEYS, REQUIRED_KEYS, load_settings
from postbuy.errors import ConfigurationError
from postbuy.logging import configure_logging
from postbuy.monitor import OfferDecisionMonitor
from postbuy.orchestrator import run_all
from postbuy.store import SupabaseRecordStore, create_supabase_client


def handle_address(address: str) -> int:
    """Run every task once for ``address``; exit status reflects overall success."""
    settings = load_settings(required=REQUIRED_KEYS + HOUSECANARY_KEYS)
    report = asyncio.run(run_all(address, settings=settings))
    print(json.dumps(report.to_dict(), indent=2, default=str))
    if report.overall_success:
        logger.success(report.message)
        return 0
    logger.error(report.message)
    return 1


def handle_monitor(interval: float, state_file: str) -> None:
    settings = load_settings(required=REQUIRED_KEYS + HOUSECANARY_KEYS)
    store = SupabaseRecordStore(create_supabase_client(settings))

    async def runner(address: str):
        return await run_all(address, settings=settings)

    monitor = OfferDecisionMonitor(store, settings.table, runner, state_path=state_file)
    asyncio.run(monitor.run_forever(interval))


def handle_web(port: int) -> None:
    """Start the FastAPI wrapper (app/server.py)."""
    import uvicorn

    logger.info(f"Starting enrichment HTTP server on port {port}...")
    logger.info(f"Local Access: http://localhost:{port}")
    uvicorn.run("app.server:app", host="0.0.0.0", port=port, reload=False, log_level="info")


def main():
    parser = argparse.ArgumentParser(description="Post-buy property enrichment")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--address", type=str, help="Enrich a single address")
    group.add_argument("--monitor", action="store_true", help="Watch offer_decision and enrich new BUY rows")
    group.add_argument("--web", action="store_true", help="Start web server")
    parser.add_argument("--port", type=int, default=None, help="Port for --web (default: PORT or 8080)")
    parser.add_argument("--interval", type=float, default=30.0, help="Polling interval in seconds for --monitor")
    parser.add_argument(
        "--state-file",
        type=str,
        default="data/property-states.json",
        help="Where --monitor persists the last seen decision per row",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL")

    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        if args.address is not None:
            if not args.address.strip():
                logger.error("Address is required")
                sys.exit(2)
            sys.exit(handle_address(args.address))
        elif args.monitor:
            handle_monitor(args.interval, args.state_file)
        elif args.web:
            port = args.port or load_settings(required=()).port
            handle_web(port)
    except ConfigurationError as exc:
        logger.error(str(exc))
        sys.exit(2)


if __name__ == "__main__":
    main()
