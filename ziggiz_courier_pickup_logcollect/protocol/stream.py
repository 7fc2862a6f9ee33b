# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Client stream: reads a handed-off descriptor and forwards its lines to syslog

# Standard library imports
import logging
import os
import re

from typing import Any, Callable, Dict, List, Optional, Tuple

# Local/package imports
from ziggiz_courier_pickup_logcollect.errors import FatalCollectorError
from ziggiz_courier_pickup_logcollect.protocol.dispatcher import EventDispatcher
from ziggiz_courier_pickup_logcollect.protocol.forwarder import (
    SendResult,
    SyslogForwarder,
    format_header,
)
from ziggiz_courier_pickup_logcollect.telemetry import get_tracer

# Constants
DEFAULT_READ_CHUNK_SIZE = 16 * 1024  # 16 KiB
READ_ERROR_CLOSE_STREAM = "close_stream"
READ_ERROR_EXIT = "exit"
READ_ERROR_POLICIES = (READ_ERROR_CLOSE_STREAM, READ_ERROR_EXIT)

# A run of CR/LF characters separates two records
_RECORD_DELIMITER = re.compile(b"[\r\n]+")


def split_records(chunk: bytes) -> List[bytes]:
    """
    Split a chunk into its non-empty CR/LF delimited records.

    Partial lines are not carried over: a line cut by a read boundary becomes
    two records.
    """
    return [record for record in _RECORD_DELIMITER.split(chunk) if record]


class ClientStream:
    """
    One handed-off descriptor and the tag its lines are forwarded under.

    The stream exclusively owns its descriptor. ``close`` releases the
    descriptor and the dispatcher registration exactly once.
    """

    def __init__(
        self,
        fd: int,
        tag: str,
        dispatcher: EventDispatcher,
        forwarder: SyslogForwarder,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        read_error_policy: str = READ_ERROR_CLOSE_STREAM,
        peer_creds: Optional[Tuple[int, int, int]] = None,
        on_close: Optional[Callable[["ClientStream"], None]] = None,
    ):
        """
        Initialize the stream.

        Args:
            fd: The handed-off descriptor, owned by this stream from now on
            tag: Name every forwarded line is tagged with
            dispatcher: Dispatcher the descriptor is registered with
            forwarder: Shared syslog forwarder
            read_chunk_size: Maximum number of bytes read per readiness event
            read_error_policy: "close_stream" or "exit"
            peer_creds: Optional (pid, uid, gid) of the process that handed the descriptor over
            on_close: Called once with this stream after teardown
        """
        if read_error_policy not in READ_ERROR_POLICIES:
            raise ValueError(
                f"Invalid read error policy: {read_error_policy}. "
                f"Must be one of {list(READ_ERROR_POLICIES)}"
            )
        self.logger = logging.getLogger(
            "ziggiz_courier_pickup_logcollect.protocol.stream"
        )
        self.fd = fd
        self.tag = tag
        self.dispatcher = dispatcher
        self.forwarder = forwarder
        self.read_chunk_size = read_chunk_size
        self.read_error_policy = read_error_policy
        self.peer_creds = peer_creds
        self.on_close = on_close
        self.registered = False
        self.closed = False

    def get_peer_info(self) -> Dict[str, Any]:
        peer_info: Dict[str, Any] = {"tag": self.tag, "fd": self.fd}
        if self.peer_creds:
            pid, uid, gid = self.peer_creds
            peer_info.update({"pid": pid, "uid": uid, "gid": gid})
        return peer_info

    def register(self) -> None:
        """
        Register the descriptor with the dispatcher for read readiness.
        """
        if self.closed or self.registered:
            return
        self.dispatcher.add_reader(self.fd, self.on_readable)
        self.registered = True

    def on_readable(self) -> None:
        """
        Readiness callback: read one chunk, then forward it or tear down on EOF.
        """
        if self.closed:
            return

        try:
            chunk = os.read(self.fd, self.read_chunk_size)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            self.handle_read_error(e)
            return

        if not chunk:
            self.logger.info(f"eof logging '{self.tag}'", extra=self.get_peer_info())
            self.close()
            return

        self.forward_chunk(chunk)

    def forward_chunk(self, chunk: bytes) -> int:
        """
        Forward every record of ``chunk``, stopping at the first failed send.

        Returns:
            The number of records handed to the forwarder successfully
        """
        records = split_records(chunk)
        tracer = get_tracer()
        forwarded = 0

        with tracer.start_as_current_span(
            "logcollect.stream.chunk",
            attributes={
                "logcollect.tag": self.tag,
                "logcollect.fd": self.fd,
                "chunk.length": len(chunk),
            },
        ) as span:
            # One timestamp per chunk
            header = format_header(self.tag)
            for record in records:
                result = self.forwarder.send(header, record)
                if result is not SendResult.OK:
                    self.logger.debug(
                        "Aborting chunk after failed send",
                        extra={**self.get_peer_info(), "result": result.value},
                    )
                    break
                forwarded += 1

            span.set_attribute("records.forwarded", forwarded)
            span.set_attribute("records.aborted", len(records) - forwarded)

        return forwarded

    def handle_read_error(self, exc: OSError) -> None:
        """
        Tear down this stream after a read error.

        With the "exit" policy the error is re-raised as FatalCollectorError so
        the daemon stops.
        """
        self.logger.error(
            f"read '{self.tag}' {self.fd}: {exc}",
            extra={**self.get_peer_info(), "error": str(exc)},
        )
        self.close()
        if self.read_error_policy == READ_ERROR_EXIT:
            raise FatalCollectorError(
                f"read error on stream '{self.tag}': {exc}"
            ) from exc

    def close(self) -> None:
        """
        Deregister and close the descriptor. Safe to call more than once.
        """
        if self.closed:
            return
        self.closed = True

        if self.registered:
            self.dispatcher.remove_reader(self.fd)
            self.registered = False

        try:
            os.close(self.fd)
        except OSError as e:
            self.logger.warning(
                f"close '{self.tag}' {self.fd}: {e}",
                extra={**self.get_peer_info(), "error": str(e)},
            )

        if self.on_close is not None:
            self.on_close(self)
