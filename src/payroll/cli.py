"""
Command-line interface for Cardano Payroll.

Provides commands for running the payroll service, one-off runs, key
generation and inspecting the transaction log.
"""

import argparse
import asyncio
import json
import signal
import sys

import structlog
from pycardano import Address, Network, PaymentSigningKey, PaymentVerificationKey

from payroll import __version__
from payroll.config import PayrollConfig, set_config
from payroll.core.models import lovelace_to_ada
from payroll.core.payroll import PayrollService
from payroll.core.run import RunStatus
from payroll.core.scheduler import PayrollScheduler
from payroll.state.database import init_database
from payroll.state.interface import StaticRecipientSource


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    import logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stdout,
    )
    # SQLAlchemy and httpx are noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--network",
        choices=["mainnet", "preprod", "preview", "local"],
        help="Cardano network (default: preprod)",
    )
    parser.add_argument(
        "--provider",
        choices=["blockfrost", "ogmios"],
        help="Node provider (default: blockfrost)",
    )
    parser.add_argument(
        "--blockfrost-project-id",
        help="Blockfrost project ID",
    )
    parser.add_argument(
        "--signing-key",
        help="Path to the funding wallet's signing key file",
    )
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy database URL",
    )
    parser.add_argument(
        "--seed-recipients",
        dest="recipients_seed_file",
        help="JSON recipients file loaded when the recipients table is empty",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        default=None,
        help="Output logs in JSON format",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="payroll",
        description="Scheduled ADA payroll from a single funding wallet",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the payroll scheduler")
    _add_common_arguments(run_parser)
    run_parser.add_argument(
        "--cron",
        help='Crontab expression for payroll runs (default: "0 10 1 * *")',
    )
    run_parser.add_argument(
        "--interval",
        type=int,
        help="Run every N seconds instead of on the cron schedule",
    )
    run_parser.add_argument(
        "--api",
        action="store_true",
        help="Serve the HTTP API alongside the scheduler",
    )
    run_parser.add_argument("--host", help="API bind address")
    run_parser.add_argument("--port", type=int, help="API port")

    # Once command
    once_parser = subparsers.add_parser("once", help="Run payroll once and exit")
    _add_common_arguments(once_parser)
    once_parser.add_argument(
        "--recipients-file",
        help='JSON list of {"address": ..., "amount": <lovelace>} (default: database recipients)',
    )

    # Keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate a funding wallet key")
    keygen_parser.add_argument(
        "--out",
        help="Write payment.skey and payment.vkey with this path prefix",
    )

    # Transactions command
    tx_parser = subparsers.add_parser("transactions", help="List recorded payroll transactions")
    _add_common_arguments(tx_parser)
    tx_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of transactions to show (default: 20)",
    )

    return parser


def build_config(args: argparse.Namespace) -> PayrollConfig:
    """Build configuration from the environment plus command-line overrides."""
    overrides = {
        "network": getattr(args, "network", None),
        "node_provider": getattr(args, "provider", None),
        "blockfrost_project_id": getattr(args, "blockfrost_project_id", None),
        "signing_key_path": getattr(args, "signing_key", None),
        "database_url": getattr(args, "database_url", None),
        "recipients_seed_file": getattr(args, "recipients_seed_file", None),
        "schedule_cron": getattr(args, "cron", None),
        "schedule_interval_seconds": getattr(args, "interval", None),
        "api_host": getattr(args, "host", None),
        "api_port": getattr(args, "port", None),
        "log_level": getattr(args, "log_level", None),
        "log_json": getattr(args, "log_json", None),
    }
    config = PayrollConfig(**{k: v for k, v in overrides.items() if v is not None})
    set_config(config)
    return config


def _install_signal_handlers(callback) -> None:
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, callback)
    except NotImplementedError:
        pass  # Signals not available on Windows


async def run_scheduler(config: PayrollConfig) -> None:
    """Run the payroll scheduler until interrupted."""
    database = await init_database(config)

    service = PayrollService(recipient_source=database, transaction_log=database, config=config)
    scheduler = PayrollScheduler(service, config)

    def signal_handler():
        print("\nShutting down...")
        scheduler.stop()

    _install_signal_handlers(signal_handler)

    print(f"Starting Cardano Payroll v{__version__}")
    print(f"Network: {config.network.value}")
    if config.schedule_interval_seconds:
        print(f"Schedule: every {config.schedule_interval_seconds}s")
    else:
        print(f"Schedule: {config.schedule_cron} ({config.schedule_timezone})")
    print()

    try:
        await service.initialize()
        await scheduler.start()
    finally:
        await service.shutdown()
        await database.disconnect()


async def run_api(config: PayrollConfig) -> None:
    """Serve the HTTP API; the scheduler runs inside the app lifespan."""
    import uvicorn

    from payroll.api.app import create_app

    app = create_app(config)
    server = uvicorn.Server(
        uvicorn.Config(
            app=app,
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower(),
            access_log=False,
        )
    )

    print(f"Starting Cardano Payroll v{__version__}")
    print(f"API: http://{config.api_host}:{config.api_port}")
    print()

    await server.serve()


async def run_once(config: PayrollConfig, recipients_file: str = None) -> int:
    """Run payroll once. Returns the process exit code."""
    database = await init_database(config)

    recipient_source = database
    if recipients_file:
        recipient_source = StaticRecipientSource.from_file(recipients_file)

    service = PayrollService(
        recipient_source=recipient_source,
        transaction_log=database,
        config=config,
    )
    scheduler = PayrollScheduler(service, config)

    try:
        run = await scheduler.trigger("cli")
    finally:
        await service.shutdown()
        await database.disconnect()

    print(json.dumps(run.to_dict(), indent=2))
    return 1 if run.status == RunStatus.FAILED else 0


def generate_keys(out: str = None) -> None:
    """Generate a funding wallet key and print its enterprise addresses."""
    signing_key = PaymentSigningKey.generate()
    verification_key = PaymentVerificationKey.from_signing_key(signing_key)

    testnet = Address(verification_key.hash(), network=Network.TESTNET)
    mainnet = Address(verification_key.hash(), network=Network.MAINNET)

    print(f"Testnet address: {testnet}")
    print(f"Mainnet address: {mainnet}")
    print(f"Signing key (hex): {signing_key.payload.hex()}")

    if out:
        signing_key.save(f"{out}.skey")
        verification_key.save(f"{out}.vkey")
        print(f"Saved {out}.skey and {out}.vkey")


async def list_transactions(config: PayrollConfig, limit: int) -> None:
    """Print recorded payroll transactions, newest first."""
    database = await init_database(config)

    try:
        records = await database.list_transactions(limit=limit)
    finally:
        await database.disconnect()

    if not records:
        print("No payroll transactions recorded.")
        return

    print(f"{len(records)} payroll transaction(s):")
    print()
    for record in records:
        print(f"  {record.tx_hash}")
        print(f"    Recorded: {record.created_at.isoformat() if record.created_at else 'unknown'}")
        if record.total_amount is not None:
            print(f"    Paid: {lovelace_to_ada(record.total_amount)} ADA to {record.recipient_count} recipient(s)")
        if record.fee is not None:
            print(f"    Fee: {lovelace_to_ada(record.fee)} ADA")
        print()


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "keygen":
        generate_keys(args.out)
        return

    config = build_config(args)
    setup_logging(config.log_level, config.log_json)

    # Run appropriate command
    if args.command == "run":
        if args.api:
            asyncio.run(run_api(config))
        else:
            asyncio.run(run_scheduler(config))
    elif args.command == "once":
        sys.exit(asyncio.run(run_once(config, args.recipients_file)))
    elif args.command == "transactions":
        asyncio.run(list_transactions(config, args.limit))


if __name__ == "__main__":
    main()
