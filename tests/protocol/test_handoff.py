# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Tests for the file descriptor handoff listener

# Standard library imports
import array
import asyncio
import errno
import logging
import os
import socket
import struct
import tempfile

from unittest.mock import MagicMock

# Third-party imports
import pytest

# Local/package imports
from ziggiz_courier_pickup_logcollect.protocol.dispatcher import AsyncioEventDispatcher
from ziggiz_courier_pickup_logcollect.protocol.handoff import (
    MAX_TAG_LENGTH,
    FdHandoffListener,
    decode_tag,
    parse_ancillary_data,
)


@pytest.fixture
def socket_pair():
    """(server, client) connected datagram sockets."""
    server, client = socket.socketpair(socket.AF_UNIX, socket.SOCK_DGRAM)
    yield server, client
    server.close()
    client.close()


@pytest.fixture
def listener(dispatcher, forwarder, socket_pair):
    server, _ = socket_pair
    handoff_listener = FdHandoffListener(dispatcher, forwarder)
    handoff_listener.attach(server)
    yield handoff_listener
    for stream in list(handoff_listener.streams.values()):
        stream.close()


def fds_ancdata(*fds):
    return [(socket.SOL_SOCKET, socket.SCM_RIGHTS, array.array("i", fds).tobytes())]


class TestHelpers:
    """Tests for the tag and ancillary data helpers."""

    @pytest.mark.unit
    def test_decode_tag_truncates(self):
        payload = b"x" * 300
        assert decode_tag(payload) == "x" * MAX_TAG_LENGTH

    @pytest.mark.unit
    def test_decode_tag_stops_at_nul_and_replaces_invalid_utf8(self):
        assert decode_tag(b"abc\0def") == "abc"
        assert decode_tag(b"caf\xc3") == "caf\ufffd"

    @pytest.mark.unit
    def test_parse_rights_and_credentials(self):
        ancdata = fds_ancdata(7, 8) + [
            (socket.SOL_SOCKET, socket.SCM_CREDENTIALS, struct.pack("3i", 11, 22, 33))
        ]
        fds, creds = parse_ancillary_data(ancdata)
        assert fds == [7, 8]
        assert creds == (11, 22, 33)

    @pytest.mark.unit
    def test_parse_ignores_other_levels_and_partial_entries(self):
        ancdata = [
            (socket.IPPROTO_IP, socket.SCM_RIGHTS, array.array("i", [5]).tobytes()),
            (socket.SOL_SOCKET, socket.SCM_RIGHTS, array.array("i", [9]).tobytes() + b"\x01"),
        ]
        assert parse_ancillary_data(ancdata) == ([9], None)


class TestFdHandoffListener:
    """Tests for the FdHandoffListener class."""

    @pytest.mark.unit
    def test_init(self, dispatcher, forwarder):
        handoff_listener = FdHandoffListener(dispatcher, forwarder)
        assert (
            handoff_listener.logger.name
            == "ziggiz_courier_pickup_logcollect.protocol.handoff"
        )
        assert handoff_listener.address == "@logcollectd"
        assert handoff_listener.max_tag_length == 127
        assert handoff_listener.sock is None
        assert handoff_listener.streams == {}

    @pytest.mark.unit
    def test_attach_registers_socket(self, listener, dispatcher, socket_pair):
        server, _ = socket_pair
        assert server.fileno() in dispatcher.readers
        assert server.getblocking() is False

    @pytest.mark.integration
    def test_handoff_creates_registered_stream(
        self, listener, dispatcher, forwarder, socket_pair, caplog
    ):
        caplog.set_level(logging.INFO)
        server, client = socket_pair
        read_end, write_end = os.pipe()
        try:
            socket.send_fds(client, [b"build"], [read_end])
            os.close(read_end)

            dispatcher.fire(server.fileno())

            assert len(listener.streams) == 1
            stream = next(iter(listener.streams.values()))
            assert stream.tag == "build"
            assert stream.registered
            assert stream.fd in dispatcher.readers
            assert "new log request 'build'" in caplog.text

            os.write(write_end, b"step1\nstep2\n")
            dispatcher.fire(stream.fd)
            assert [record for _, record in forwarder.sent] == [b"step1", b"step2"]
        finally:
            os.close(write_end)

    @pytest.mark.integration
    def test_long_tag_is_truncated(self, listener, dispatcher, socket_pair):
        server, client = socket_pair
        read_end, write_end = os.pipe()
        try:
            socket.send_fds(client, [b"t" * 500], [read_end])
            os.close(read_end)
            dispatcher.fire(server.fileno())

            stream = next(iter(listener.streams.values()))
            assert stream.tag == "t" * 127
        finally:
            os.close(write_end)

    @pytest.mark.integration
    def test_missing_descriptor_is_dropped(
        self, listener, dispatcher, socket_pair, caplog
    ):
        caplog.set_level(logging.WARNING)
        server, client = socket_pair
        client.send(b"orphan")

        dispatcher.fire(server.fileno())

        assert listener.streams == {}
        assert "without file descriptor for 'orphan'" in caplog.text
        # Still serving
        assert server.fileno() in dispatcher.readers

    @pytest.mark.integration
    def test_extra_descriptors_are_closed(self, listener, dispatcher, socket_pair):
        server, client = socket_pair
        first_read, first_write = os.pipe()
        second_read, second_write = os.pipe()
        try:
            socket.send_fds(client, [b"multi"], [first_read, second_read])
            os.close(first_read)
            os.close(second_read)
            dispatcher.fire(server.fileno())

            assert len(listener.streams) == 1
            # The surplus read end was closed by the listener
            with pytest.raises(BrokenPipeError):
                os.write(second_write, b"x")
        finally:
            os.close(first_write)
            os.close(second_write)

    @pytest.mark.unit
    def test_truncated_control_data_fails_request(self, listener, caplog):
        caplog.set_level(logging.WARNING)
        read_end, write_end = os.pipe()
        try:
            result = listener.handle_handoff(
                b"trunc", fds_ancdata(read_end), socket.MSG_CTRUNC
            )
            assert result is None
            assert listener.streams == {}
            with pytest.raises(OSError):
                os.fstat(read_end)
            assert "truncated" in caplog.text
        finally:
            os.close(write_end)

    @pytest.mark.unit
    def test_recv_error_does_not_stop_listener(self, listener, caplog):
        caplog.set_level(logging.WARNING)
        listener.sock = MagicMock()
        listener.sock.recvmsg.side_effect = OSError(errno.EMFILE, "Too many open files")

        listener.on_readable()

        assert listener.streams == {}
        assert "Too many open files" in caplog.text

    @pytest.mark.unit
    def test_would_block_is_ignored(self, listener, dispatcher, socket_pair):
        server, _ = socket_pair
        dispatcher.fire(server.fileno())
        assert listener.streams == {}

    @pytest.mark.unit
    def test_credentials_are_attached(self, dispatcher, forwarder):
        handoff_listener = FdHandoffListener(
            dispatcher, forwarder, pass_credentials=True
        )
        read_end, write_end = os.pipe()
        try:
            ancdata = fds_ancdata(read_end) + [
                (socket.SOL_SOCKET, socket.SCM_CREDENTIALS, struct.pack("3i", 4, 5, 6))
            ]
            stream = handoff_listener.handle_handoff(b"svc", ancdata)
            assert stream.peer_creds == (4, 5, 6)
            stream.close()
        finally:
            os.close(write_end)

    @pytest.mark.integration
    def test_unwatchable_descriptor_fails_only_that_request(self, forwarder, caplog):
        caplog.set_level(logging.WARNING)
        loop = asyncio.new_event_loop()
        handoff_listener = FdHandoffListener(AsyncioEventDispatcher(loop), forwarder)
        try:
            with tempfile.TemporaryFile() as regular_file:
                fd = os.dup(regular_file.fileno())
                result = handoff_listener.handle_handoff(b"regular", fds_ancdata(fd))

                assert result is None
                assert handoff_listener.streams == {}
                with pytest.raises(OSError):
                    os.fstat(fd)
                assert "cannot watch file descriptor for 'regular'" in caplog.text

            read_end, write_end = os.pipe()
            stream = handoff_listener.handle_handoff(b"pipe", fds_ancdata(read_end))
            assert handoff_listener.streams == {read_end: stream}
            stream.close()
            os.close(write_end)
        finally:
            loop.close()

    @pytest.mark.unit
    def test_stream_closed_is_forgotten(self, listener, dispatcher):
        read_end, write_end = os.pipe()
        stream = listener.handle_handoff(b"gone", fds_ancdata(read_end))
        assert listener.streams == {read_end: stream}

        os.close(write_end)
        dispatcher.fire(read_end)

        assert stream.closed
        assert listener.streams == {}

    @pytest.mark.integration
    def test_open_and_close_abstract_address(
        self, dispatcher, forwarder, abstract_address
    ):
        handoff_listener = FdHandoffListener(
            dispatcher, forwarder, address=abstract_address
        )
        handoff_listener.open()
        fileno = handoff_listener.sock.fileno()
        assert fileno in dispatcher.readers

        read_end, write_end = os.pipe()
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as client:
            client.sendmsg(
                [b"live"],
                [(socket.SOL_SOCKET, socket.SCM_RIGHTS, array.array("i", [read_end]))],
                0,
                "\0" + abstract_address[1:],
            )
        os.close(read_end)
        dispatcher.fire(fileno)
        stream = next(iter(handoff_listener.streams.values()))

        handoff_listener.close()

        assert handoff_listener.sock is None
        assert fileno in dispatcher.removed
        assert stream.closed
        assert handoff_listener.streams == {}
        os.close(write_end)

    @pytest.mark.integration
    def test_open_fails_when_address_in_use(
        self, dispatcher, forwarder, abstract_address
    ):
        first = FdHandoffListener(dispatcher, forwarder, address=abstract_address)
        first.open()
        try:
            second = FdHandoffListener(dispatcher, forwarder, address=abstract_address)
            with pytest.raises(OSError):
                second.open()
            assert second.sock is None
        finally:
            first.close()
