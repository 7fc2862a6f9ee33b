# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Server implementation for the log collector daemon

# Standard library imports
import asyncio
import logging
import signal

from typing import Any, Dict, Optional

# Local/package imports
from ziggiz_courier_pickup_logcollect.config import Config
from ziggiz_courier_pickup_logcollect.errors import FatalCollectorError
from ziggiz_courier_pickup_logcollect.protocol.dispatcher import (
    AsyncioEventDispatcher,
    EventDispatcher,
)
from ziggiz_courier_pickup_logcollect.protocol.forwarder import SyslogForwarder
from ziggiz_courier_pickup_logcollect.protocol.handoff import FdHandoffListener

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LogCollectServer:
    """
    AsyncIO server implementation for the log collector daemon.
    This class owns the syslog forwarder, the handoff listener and, through
    the listener, every live client stream.
    """

    def __init__(self, config: Config = None):
        """
        Initialize the collector.

        Args:
            config: The configuration object
        """
        self.logger = logging.getLogger("ziggiz_courier_pickup_logcollect.server")
        self.config = config or Config()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.dispatcher: Optional[EventDispatcher] = None
        self.forwarder: Optional[SyslogForwarder] = None
        self.listener: Optional[FdHandoffListener] = None
        self.exit_code = 0

    async def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Start the collector.

        Args:
            loop: Optional event loop to use

        Raises:
            RuntimeError: If the collector fails to start
        """
        self.loop = loop or asyncio.get_running_loop()

        self.logger.info(
            f"Starting log collector on {self.config.listen_address}, "
            f"forwarding to {self.config.syslog_address}"
        )

        try:
            self.dispatcher = AsyncioEventDispatcher(self.loop)
            self.forwarder = SyslogForwarder(self.config.syslog_address)
            self.listener = FdHandoffListener(
                self.dispatcher,
                self.forwarder,
                address=self.config.listen_address,
                max_tag_length=self.config.max_tag_length,
                read_chunk_size=self.config.read_chunk_size,
                read_error_policy=self.config.read_error_policy,
                pass_credentials=self.config.pass_credentials,
            )
            self.listener.open()
            self.loop.set_exception_handler(self.handle_loop_exception)
        except Exception as e:
            self.logger.error(f"Failed to start log collector: {e}")
            if self.listener is not None:
                self.listener.close()
                self.listener = None
            raise RuntimeError(f"Failed to start log collector: {e}")

    def install_signal_handlers(self) -> None:
        """
        Stop the loop on SIGINT/SIGTERM.

        Raises:
            RuntimeError: If the handlers cannot be installed
        """
        try:
            for signum in SHUTDOWN_SIGNALS:
                self.loop.add_signal_handler(signum, self.handle_signal, signum)
        except (ValueError, NotImplementedError, RuntimeError) as e:
            raise RuntimeError(f"Failed to install signal handlers: {e}")

    def handle_signal(self, signum: int) -> None:
        self.logger.warning("terminated", extra={"signal": signum})
        self.exit_code = 0
        self.loop.stop()

    def handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]
    ) -> None:
        """
        Loop exception handler: a FatalCollectorError stops the daemon with exit code 1.
        """
        exc = context.get("exception")
        if isinstance(exc, FatalCollectorError):
            self.logger.error(f"Fatal collector error, stopping: {exc}")
            self.exit_code = 1
            loop.stop()
            return
        loop.default_exception_handler(context)

    async def stop(self) -> None:
        """
        Stop the collector and release every descriptor it owns.
        """
        self.logger.info("Stopping log collector")

        if self.listener:
            self.logger.debug(
                "Closing handoff listener",
                extra={"streams": len(self.listener.streams)},
            )
            self.listener.close()
            self.listener = None

        if self.forwarder:
            self.forwarder.close()
            self.forwarder = None

        if self.loop is not None:
            for signum in SHUTDOWN_SIGNALS:
                try:
                    self.loop.remove_signal_handler(signum)
                except (ValueError, NotImplementedError, RuntimeError):
                    pass
