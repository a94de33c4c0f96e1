"""PongHub - HTTP endpoint prober that keeps an uptime history for a status page."""

import argparse
import logging
import sys

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - probe every endpoint once and update the log."""
    _setup_logging(args.verbose)

    logger.info("PongHub %s starting...", __version__)

    # Import here so logging is configured before module loggers are used
    from .checker import QuietSink, VerboseSink, run_checks
    from .config import ConfigError, load_config
    from .history import LogStoreError, update_log
    from .params import ParameterResolver

    resolver = ParameterResolver()

    # 1. Load configuration
    try:
        config = load_config(args.config, resolver=resolver)
        logger.info("Configuration loaded from %s", args.config)
        logger.info(
            "Checking %d endpoints in %d services (timeout %ds, %d attempts)",
            config.endpoint_count,
            len(config.services),
            config.timeout,
            config.max_retry_times,
        )
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    log_path = args.log or config.log_path

    # 2. Probe
    sink = VerboseSink() if args.verbose_probes else QuietSink()
    try:
        results = run_checks(config, sink=sink, resolver=resolver)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    for result in results:
        logger.info(
            "%s: %s (%d/%d attempts succeeded)",
            result.name,
            result.status.value,
            result.success_num,
            result.attempt_num,
        )

    # 3. Persist history
    try:
        update_log(results, config.max_log_days, log_path)
    except LogStoreError as e:
        logger.error("Log store error: %s", e)
        sys.exit(1)

    logger.info("Run complete")


def _cmd_clean(args: argparse.Namespace) -> None:
    """Execute the clean command - prune old entries from the log without probing."""
    _setup_logging(args.verbose)

    from .config import ConfigError, load_config
    from .history import LogStoreError, load_log, prune_log, save_log
    from .params import ParameterResolver

    # 1. Load configuration (pruning needs no endpoint secrets)
    try:
        config = load_config(args.config, resolver=ParameterResolver(strict=False))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    # 2. Determine retention days
    if args.max_log_days is not None:
        if args.max_log_days < 1:
            logger.error("max-log-days must be a positive integer")
            sys.exit(1)
        max_log_days = args.max_log_days
    else:
        max_log_days = config.max_log_days

    log_path = args.log or config.log_path

    # 3. Prune and rewrite
    try:
        store = load_log(log_path)
        removed = prune_log(store, max_log_days)
        save_log(store, log_path)
    except LogStoreError as e:
        logger.error("Log store error: %s", e)
        sys.exit(1)

    logger.info("Removed %d history entries older than %d days from %s", removed, max_log_days, log_path)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-l", "--log",
        help="Path to the JSON history log (default: log_path from config)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the ponghub package."""
    parser = argparse.ArgumentParser(
        description="PongHub - probe HTTP endpoints and keep an uptime history"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"ponghub {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Probe all endpoints once and update the history log (default)",
    )
    _add_common_arguments(run_parser)
    run_parser.add_argument(
        "--verbose-probes",
        action="store_true",
        help="Log every request attempt (may expose resolved secrets)",
    )
    run_parser.set_defaults(func=_cmd_run)

    # Clean subcommand
    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove history entries older than the retention window",
    )
    _add_common_arguments(clean_parser)
    clean_parser.add_argument(
        "--max-log-days",
        type=int,
        help="Keep this many days of history (overrides config)",
    )
    clean_parser.set_defaults(func=_cmd_clean)

    args = parser.parse_args(argv)

    # Default to 'run' if no command specified
    if args.command is None:
        args = run_parser.parse_args([])

    args.func(args)
