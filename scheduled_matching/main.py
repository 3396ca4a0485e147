"""CLI entry point: serve the API, run one batch, or print batch statistics."""

import argparse
import logging
import sys

from scheduled_matching.config import AppConfig, load_config, validate_config
from scheduled_matching.container import Services, build_services, init_database
from scheduled_matching.errors import ScheduledMatchingError
from scheduled_matching.models import Trigger
from scheduled_matching.utils.logging_config import setup_logging

logger = logging.getLogger("scheduled_matching")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Scheduled Matching - per-country cron batches and manual matchings",
    )
    parser.add_argument(
        "--config", default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--serve", action="store_true",
        help="Run the HTTP API with the scheduler",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind address for --serve")
    parser.add_argument("--port", type=int, default=8000, help="Port for --serve")
    parser.add_argument(
        "--trigger", metavar="COUNTRY",
        help="Run one matching batch for COUNTRY now and print the result",
    )
    parser.add_argument(
        "--stats", action="store_true",
        help="Print batch statistics per country and exit",
    )
    parser.add_argument(
        "--init-db", action="store_true",
        help="Create tables and seed default country configs, then exit",
    )
    return parser.parse_args(argv)


def print_stats(services: Services):
    """Print batch statistics."""
    stats = services.ledger.summary()
    print("\n=== Scheduled Matching Statistics ===")
    if not stats:
        print("No batches recorded yet.")
    for country, row in sorted(stats.items()):
        print(f"\n{country}")
        print(f"  Batches: {row['total_batches']}")
        print(f"  Successful matches: {row['total_successes']}")
        print(f"  Failed users: {row['total_failures']}")
        if row["last_started_at"]:
            print(f"  Last run: {row['last_started_at']} ({row['last_status']})")

    print("\nConfigs:")
    for config in services.registry.list():
        state = "enabled" if config.is_enabled else "disabled"
        print(f"  {config.country}: '{config.cron_expression}' {config.timezone} ({state})")
    print()


def run_batch(services: Services, country: str) -> int:
    """Run one batch in-process. Returns a process exit code."""
    try:
        batch = services.coordinator.run(country, Trigger.MANUAL, triggered_by="cli")
    except ScheduledMatchingError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(f"Batch {batch.id} ({batch.country}): {batch.status}")
    print(f"  Users: {batch.processed_users}/{batch.total_users}")
    print(f"  Success: {batch.success_count}  Failure: {batch.failure_count}")
    if batch.error_message:
        print(f"  Error: {batch.error_message}")
    return 0 if batch.status == "completed" else 1


def serve(config: AppConfig, host: str, port: int) -> None:
    import uvicorn

    from scheduled_matching.web.app import create_app

    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def main(argv=None):
    args = parse_args(argv)

    # Load config
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.log_dir, config.log_level, config.log_max_bytes, config.log_backup_count)

    # Validate config and print warnings
    for w in validate_config(config):
        logger.warning("Config: %s", w)

    if args.serve:
        serve(config, args.host, args.port)
        return

    services = build_services(config)
    init_database(services)

    if args.init_db:
        print("Database initialised; configs: " + ", ".join(c.country for c in services.registry.list()))
        return

    if args.stats:
        print_stats(services)
        return

    if args.trigger:
        sys.exit(run_batch(services, args.trigger))

    print("Nothing to do: pass --serve, --trigger COUNTRY, --stats or --init-db", file=sys.stderr)
    sys.exit(2)


if __name__ == "__main__":
    main()
