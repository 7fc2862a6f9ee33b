# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Main entry point for the log collector daemon

# Standard library imports
import argparse
import asyncio
import logging
import sys

from typing import Optional

# Local/package imports
from ziggiz_courier_pickup_logcollect.config import Config, configure_logging, load_config
from ziggiz_courier_pickup_logcollect.protocol.stream import READ_ERROR_POLICIES
from ziggiz_courier_pickup_logcollect.telemetry import configure_tracing


def setup_logging(log_level: str = "INFO", config: Optional[Config] = None) -> None:
    """
    Configure logging with appropriate formatters and handlers.

    Args:
        log_level: The logging level to set (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        config: Optional configuration object to use for logging setup
    """
    if config:
        configure_logging(config)
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        # Keep span export chatter out of the daemon log
        logging.getLogger("opentelemetry").setLevel(logging.WARNING)


def run_server(config: Optional[Config] = None) -> int:
    """
    Run the log collector until a termination signal arrives.

    Args:
        config: Optional configuration object

    Returns:
        The process exit code
    """
    logger = logging.getLogger("ziggiz_courier_pickup_logcollect.main")

    try:
        if not config:
            config = Config()

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        # Local/package imports
        from ziggiz_courier_pickup_logcollect.server import LogCollectServer

        server = LogCollectServer(config)

        try:
            loop.run_until_complete(server.start(loop))
            server.install_signal_handlers()

            # Block in the dispatcher wait loop until a signal stops it
            server.dispatcher.run_forever()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt, shutting down...")
        finally:
            loop.run_until_complete(server.stop())
            loop.close()
            asyncio.set_event_loop(None)

        return server.exit_code

    except Exception as e:
        logger.exception(f"Failed to run log collector: {e}")
        sys.exit(1)


def main() -> None:
    """
    Main entry point for the log collector daemon.
    Parses command-line arguments, sets up logging, and starts the collector.
    """
    parser = argparse.ArgumentParser(description="Ziggiz Courier Log Collector Daemon")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (overrides config file)",
    )
    parser.add_argument(
        "--listen-address",
        type=str,
        help="Rendezvous socket address, '@name' for the abstract namespace (overrides config file)",
    )
    parser.add_argument(
        "--syslog-address",
        type=str,
        help="System log socket to forward to (overrides config file)",
    )
    parser.add_argument(
        "--read-error-policy",
        type=str,
        choices=list(READ_ERROR_POLICIES),
        help="What a stream read error does: close the stream or exit (overrides config file)",
    )
    parser.add_argument(
        "--pass-credentials",
        action="store_true",
        default=None,
        help="Receive sender credentials with every log request (overrides config file)",
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config if args.config else None)

        # Override config with command line arguments if provided
        if args.log_level:
            config.log_level = args.log_level
        if args.listen_address:
            config.listen_address = args.listen_address
        if args.syslog_address:
            config.syslog_address = args.syslog_address
        if args.read_error_policy:
            config.read_error_policy = args.read_error_policy
        if args.pass_credentials:
            config.pass_credentials = True

        setup_logging(config=config)
        configure_tracing(config.enable_trace_console_export)
        logger = logging.getLogger("ziggiz_courier_pickup_logcollect.main")

        if args.config:
            logger.info(f"Loaded configuration from {args.config}")
        else:
            logger.info("Using default or automatically detected configuration")

        logger.info("Starting Ziggiz Courier Log Collector")
        exit_code = run_server(config)
    except KeyboardInterrupt:
        logger = logging.getLogger("ziggiz_courier_pickup_logcollect.main")
        logger.info("Collector shutdown requested by user")
        exit_code = 0
    except Exception as e:
        # Setup basic logging if we couldn't load the configuration
        if not logging.root.handlers:
            setup_logging("ERROR")
        logger = logging.getLogger("ziggiz_courier_pickup_logcollect.main")
        logger.exception(f"Unexpected error: {e}")
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
