# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Readiness dispatcher abstraction used to drive the collector loop

# Standard library imports
import asyncio
import logging

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional


class EventDispatcher(ABC):
    """
    Level-triggered readiness multiplexer.

    The collector only needs to register a readable descriptor with a callback,
    remove that registration again, and block in a wait loop until stopped.
    Any OS polling primitive can satisfy this interface.
    """

    @abstractmethod
    def add_reader(self, fd: int, callback: Callable[..., Any], *args: Any) -> None:
        """Register ``callback(*args)`` to run whenever ``fd`` is readable."""

    @abstractmethod
    def remove_reader(self, fd: int) -> bool:
        """Remove the registration for ``fd``. Returns True if one existed."""

    @abstractmethod
    def run_forever(self) -> None:
        """Block dispatching readiness callbacks until ``stop`` is called."""

    @abstractmethod
    def stop(self) -> None:
        """Make ``run_forever`` return after the current iteration."""


class AsyncioEventDispatcher(EventDispatcher):
    """
    EventDispatcher backed by an asyncio event loop's reader API.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.logger = logging.getLogger(
            "ziggiz_courier_pickup_logcollect.protocol.dispatcher"
        )
        # Without an explicit loop this must be created from a coroutine
        self.loop = loop or asyncio.get_running_loop()

    def add_reader(self, fd: int, callback: Callable[..., Any], *args: Any) -> None:
        self.loop.add_reader(fd, callback, *args)
        self.logger.debug("Registered reader", extra={"fd": fd})

    def remove_reader(self, fd: int) -> bool:
        removed = self.loop.remove_reader(fd)
        self.logger.debug("Removed reader", extra={"fd": fd, "removed": removed})
        return removed

    def run_forever(self) -> None:
        self.loop.run_forever()

    def stop(self) -> None:
        self.loop.stop()
