# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Listener receiving file descriptor handoffs from logcollect clients
#
# A handoff is a single datagram on the rendezvous socket: the payload is the
# tag, the SCM_RIGHTS ancillary data carries the read end of the client's pipe.

# Standard library imports
import array
import logging
import os
import socket
import struct

from typing import Dict, List, Optional, Tuple

# Local/package imports
from ziggiz_courier_pickup_logcollect.errors import HandoffError
from ziggiz_courier_pickup_logcollect.protocol.address import (
    DEFAULT_LISTEN_ADDRESS,
    is_abstract_address,
    resolve_unix_address,
)
from ziggiz_courier_pickup_logcollect.protocol.dispatcher import EventDispatcher
from ziggiz_courier_pickup_logcollect.protocol.forwarder import SyslogForwarder
from ziggiz_courier_pickup_logcollect.protocol.stream import (
    DEFAULT_READ_CHUNK_SIZE,
    READ_ERROR_CLOSE_STREAM,
    ClientStream,
)

# Constants
MAX_TAG_LENGTH = 127
# Room for a few descriptors so surplus ones can be received and closed
MAX_FDS_PER_HANDOFF = 4
_FD_SIZE = array.array("i").itemsize
_UCRED = struct.Struct("3i")  # pid, uid, gid


def parse_ancillary_data(
    ancdata: List[Tuple[int, int, bytes]],
) -> Tuple[List[int], Optional[Tuple[int, int, int]]]:
    """
    Extract descriptors and peer credentials from recvmsg ancillary data.

    Returns:
        A tuple of (descriptors, credentials or None)
    """
    fds: List[int] = []
    creds: Optional[Tuple[int, int, int]] = None

    for level, kind, data in ancdata:
        if level != socket.SOL_SOCKET:
            continue
        if kind == socket.SCM_RIGHTS:
            fd_array = array.array("i")
            fd_array.frombytes(data[: len(data) - (len(data) % _FD_SIZE)])
            fds.extend(fd_array)
        elif kind == socket.SCM_CREDENTIALS and len(data) >= _UCRED.size:
            creds = _UCRED.unpack(data[: _UCRED.size])

    return fds, creds


def decode_tag(payload: bytes, max_length: int = MAX_TAG_LENGTH) -> str:
    """
    Turn a handoff payload into a tag: truncate, cut at the first NUL, decode.
    """
    return payload[:max_length].split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _close_quietly(fds: List[int]) -> None:
    for fd in fds:
        try:
            os.close(fd)
        except OSError:
            pass


class FdHandoffListener:
    """
    Datagram listener turning descriptor handoffs into registered ClientStreams.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        forwarder: SyslogForwarder,
        address: str = DEFAULT_LISTEN_ADDRESS,
        max_tag_length: int = MAX_TAG_LENGTH,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        read_error_policy: str = READ_ERROR_CLOSE_STREAM,
        pass_credentials: bool = False,
    ):
        """
        Initialize the listener.

        Args:
            dispatcher: Dispatcher the rendezvous socket and all streams are registered with
            forwarder: Syslog forwarder shared by all streams
            address: Rendezvous address ("@name" for the abstract namespace)
            max_tag_length: Tags longer than this many bytes are truncated
            read_chunk_size: Passed on to every ClientStream
            read_error_policy: Passed on to every ClientStream
            pass_credentials: Ask the kernel to attach sender credentials to handoffs
        """
        self.logger = logging.getLogger(
            "ziggiz_courier_pickup_logcollect.protocol.handoff"
        )
        self.dispatcher = dispatcher
        self.forwarder = forwarder
        self.address = address
        self.max_tag_length = max_tag_length
        self.read_chunk_size = read_chunk_size
        self.read_error_policy = read_error_policy
        self.pass_credentials = pass_credentials
        self.sock: Optional[socket.socket] = None
        self.streams: Dict[int, ClientStream] = {}

        self.ancbufsize = socket.CMSG_SPACE(MAX_FDS_PER_HANDOFF * _FD_SIZE)
        if self.pass_credentials:
            self.ancbufsize += socket.CMSG_SPACE(_UCRED.size)

    def open(self) -> None:
        """
        Create and bind the rendezvous socket, then start serving it.

        Raises:
            OSError: If the socket cannot be created or bound
        """
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            if not is_abstract_address(self.address) and os.path.exists(
                self.address
            ):
                os.unlink(self.address)
            sock.bind(resolve_unix_address(self.address))
        except OSError:
            sock.close()
            raise

        self.attach(sock)
        self.logger.info(f"Listening for log requests on {self.address}")

    def attach(self, sock: socket.socket) -> None:
        """
        Serve handoffs arriving on an already bound datagram socket.
        """
        sock.setblocking(False)
        if self.pass_credentials:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_PASSCRED, 1)
        self.sock = sock
        self.dispatcher.add_reader(sock.fileno(), self.on_readable)

    def on_readable(self) -> None:
        """
        Readiness callback for the rendezvous socket; handles one handoff.
        """
        if self.sock is None:
            return

        try:
            payload, ancdata, flags, _ = self.sock.recvmsg(
                self.max_tag_length,
                self.ancbufsize,
                getattr(socket, "MSG_CMSG_CLOEXEC", 0),
            )
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            # EMFILE and friends: only this request is lost
            self.logger.warning(f"recv ctrldat: {e}", extra={"error": str(e)})
            return

        self.handle_handoff(payload, ancdata, flags)

    def handle_handoff(
        self, payload: bytes, ancdata: List[Tuple[int, int, bytes]], flags: int = 0
    ) -> Optional[ClientStream]:
        """
        Create and register a ClientStream for one received handoff.

        Returns:
            The new stream, or None if the request was dropped
        """
        tag = decode_tag(payload, self.max_tag_length)
        fds: List[int] = []

        try:
            try:
                fds, creds = parse_ancillary_data(ancdata)
            except (ValueError, struct.error) as e:
                raise HandoffError(f"malformed ancillary data for '{tag}': {e}")

            if flags & socket.MSG_CTRUNC:
                raise HandoffError(f"truncated ancillary data for '{tag}'")
            if not fds:
                raise HandoffError(
                    f"received log request without file descriptor for '{tag}'"
                )

            fd = fds[0]
            if len(fds) > 1:
                self.logger.warning(
                    f"received {len(fds)} file descriptors for '{tag}', using the first",
                    extra={"tag": tag},
                )
                _close_quietly(fds[1:])
                fds = [fd]

            try:
                os.set_blocking(fd, False)
            except OSError as e:
                raise HandoffError(f"unusable file descriptor for '{tag}': {e}")
        except HandoffError as e:
            self.logger.warning(str(e), extra={"tag": tag})
            _close_quietly(fds)
            return None

        stream = ClientStream(
            fd,
            tag,
            self.dispatcher,
            self.forwarder,
            read_chunk_size=self.read_chunk_size,
            read_error_policy=self.read_error_policy,
            peer_creds=creds,
            on_close=self._on_stream_closed,
        )
        try:
            stream.register()
        except (OSError, ValueError) as e:
            # epoll refuses regular files and some character devices
            self.logger.warning(
                f"cannot watch file descriptor for '{tag}': {e}",
                extra={"tag": tag, "error": str(e)},
            )
            stream.close()
            return None
        self.streams[fd] = stream

        self.logger.info(f"new log request '{tag}'", extra=stream.get_peer_info())
        return stream

    def _on_stream_closed(self, stream: ClientStream) -> None:
        if self.streams.get(stream.fd) is stream:
            del self.streams[stream.fd]

    def close(self) -> None:
        """
        Stop serving: close the rendezvous socket and tear down every live stream.
        """
        for stream in list(self.streams.values()):
            stream.close()
        self.streams.clear()

        if self.sock is None:
            return

        self.dispatcher.remove_reader(self.sock.fileno())
        self.sock.close()
        self.sock = None

        if not is_abstract_address(self.address) and os.path.exists(self.address):
            try:
                os.unlink(self.address)
                self.logger.debug(f"Removed Unix socket file: {self.address}")
            except OSError as e:
                self.logger.warning(f"Error removing Unix socket file: {e}")
