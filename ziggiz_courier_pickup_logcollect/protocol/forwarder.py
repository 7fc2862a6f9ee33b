# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Forwarder relaying tagged records to the local system log service
#
# The forwarder owns the single outbound datagram connection to the syslog
# socket. It connects lazily, degrades to a no-op while the syslog service is
# unavailable, and reconnects on the next send.

# Standard library imports
import logging
import socket

from datetime import datetime, timezone
from enum import Enum
from logging.handlers import SysLogHandler
from typing import Optional

# Local/package imports
from ziggiz_courier_pickup_logcollect.protocol.address import resolve_unix_address

DEFAULT_SYSLOG_ADDRESS = "/dev/log"

# Every forwarded line is local6.notice
FORWARD_FACILITY = SysLogHandler.LOG_LOCAL6
FORWARD_SEVERITY = SysLogHandler.LOG_NOTICE

# Fixed English abbreviations so headers do not depend on the process locale
_MONTHS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


class SendResult(Enum):
    """
    Outcome of a single forwarding attempt.

    Values:
        OK: The record was handed to the syslog socket.
        DROPPED: No connection could be established; the record was discarded.
        WOULD_BLOCK: The syslog socket is full; the connection is kept.
        DISCONNECTED: The send failed and the connection was dropped.
    """

    OK = "ok"
    DROPPED = "dropped"
    WOULD_BLOCK = "would_block"
    DISCONNECTED = "disconnected"


def encode_priority(
    facility: int = FORWARD_FACILITY, severity: int = FORWARD_SEVERITY
) -> int:
    """Encode a facility/severity pair into a syslog PRI value."""
    return (facility << 3) | severity


def format_timestamp(when: Optional[datetime] = None) -> str:
    """
    Format ``when`` (default: now, UTC) as ``Mon DD HH:MM:SS`` with a space padded day.
    """
    if when is None:
        when = datetime.now(timezone.utc)
    return f"{_MONTHS[when.month - 1]} {when.day:2d} {when:%H:%M:%S}"


def format_header(tag: str, when: Optional[datetime] = None) -> bytes:
    """Build the ``<PRI>TIMESTAMP TAG: `` prefix for a forwarded record."""
    return f"<{encode_priority()}>{format_timestamp(when)} {tag}: ".encode(
        "utf-8", errors="replace"
    )


class SyslogForwarder:
    """
    Lazily connected datagram forwarder to the system log socket.
    """

    def __init__(self, address: str = DEFAULT_SYSLOG_ADDRESS):
        """
        Initialize the forwarder in the disconnected state.

        Args:
            address: Path (or ``@name`` abstract address) of the syslog socket
        """
        self.logger = logging.getLogger(
            "ziggiz_courier_pickup_logcollect.protocol.forwarder"
        )
        self.address = address
        self.sock: Optional[socket.socket] = None

    @property
    def connected(self) -> bool:
        return self.sock is not None

    def ensure_connected(self) -> bool:
        """
        Connect to the syslog socket unless already connected.

        Returns:
            True if a connection is available after the call
        """
        if self.sock is not None:
            return True

        try:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        except OSError as e:
            self.logger.debug(
                "Could not create syslog socket", extra={"error": str(e)}
            )
            return False

        try:
            sock.connect(resolve_unix_address(self.address))
        except OSError as e:
            sock.close()
            self.logger.debug(
                f"Could not connect to {self.address}", extra={"error": str(e)}
            )
            return False

        self.sock = sock
        self.logger.info(f"Connected to {self.address}")
        return True

    def send(self, header: bytes, record: bytes) -> SendResult:
        """
        Forward one record as a single two-part datagram without blocking.

        Args:
            header: The ``<PRI>TIMESTAMP TAG: `` prefix
            record: The record text

        Returns:
            The SendResult of the attempt
        """
        if not self.ensure_connected():
            return SendResult.DROPPED

        try:
            self.sock.sendmsg([header, record], [], socket.MSG_DONTWAIT)
        except BlockingIOError:
            return SendResult.WOULD_BLOCK
        except OSError as e:
            self.logger.warning(f"sendmsg: {e}", extra={"error": str(e)})
            self._disconnect()
            return SendResult.DISCONNECTED

        return SendResult.OK

    def _disconnect(self) -> None:
        if self.sock is None:
            return
        try:
            self.sock.close()
        finally:
            self.sock = None
        self.logger.info(f"Disconnected from {self.address}")

    def close(self) -> None:
        """
        Close the outbound connection, if any.
        """
        self._disconnect()
