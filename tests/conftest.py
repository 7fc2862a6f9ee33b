# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Pytest configuration file

# Standard library imports
import logging
import socket
import uuid

from typing import Any, Callable, Dict, List, Tuple

# Third-party imports
import pytest

# Local/package imports
from ziggiz_courier_pickup_logcollect.protocol.dispatcher import EventDispatcher
from ziggiz_courier_pickup_logcollect.protocol.forwarder import SendResult


# Define test categories
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark a test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark a test as an integration test"
    )


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    # Reset root logger after each test
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)  # Default level


class FakeDispatcher(EventDispatcher):
    """Dispatcher that records registrations instead of polling."""

    def __init__(self):
        self.readers: Dict[int, Tuple[Callable[..., Any], tuple]] = {}
        self.added: List[int] = []
        self.removed: List[int] = []
        self.stopped = False

    def add_reader(self, fd, callback, *args):
        self.readers[fd] = (callback, args)
        self.added.append(fd)

    def remove_reader(self, fd):
        self.removed.append(fd)
        return self.readers.pop(fd, None) is not None

    def run_forever(self):
        raise NotImplementedError

    def stop(self):
        self.stopped = True

    def fire(self, fd):
        """Invoke the callback registered for fd, as a readiness event would."""
        callback, args = self.readers[fd]
        callback(*args)


class RecordingForwarder:
    """Forwarder double returning scripted results and recording every send."""

    def __init__(self, results=None):
        self.sent: List[Tuple[bytes, bytes]] = []
        self.results = list(results or [])

    def send(self, header, record):
        self.sent.append((header, record))
        if self.results:
            return self.results.pop(0)
        return SendResult.OK


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def forwarder():
    return RecordingForwarder()


@pytest.fixture
def forwarder_factory():
    """Build a RecordingForwarder with scripted send results."""
    return RecordingForwarder


@pytest.fixture
def abstract_address():
    """A unique abstract namespace address."""
    return f"@logcollect-test-{uuid.uuid4().hex}"


@pytest.fixture
def syslog_receiver(abstract_address):
    """A datagram socket standing in for /dev/log; yields (address, socket)."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    sock.bind("\0" + abstract_address[1:])
    sock.settimeout(2.0)
    yield abstract_address, sock
    sock.close()
