# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# logcollect: run a program with its stdout/stderr collected by logcollectd
#
# The helper creates a pipe, hands the read end to the daemon together with a
# tag, points its own stdout and stderr at the write end and then execs the
# target program. If the daemon cannot be reached the program still runs, with
# its output streams left alone.

# Standard library imports
import argparse
import array
import logging
import os
import socket
import sys

from typing import List, Optional

# Local/package imports
from ziggiz_courier_pickup_logcollect import __version__
from ziggiz_courier_pickup_logcollect.main import setup_logging
from ziggiz_courier_pickup_logcollect.protocol.address import (
    DEFAULT_LISTEN_ADDRESS,
    resolve_unix_address,
)

NAME = "logcollect"
TAG_ENVIRONMENT_VARIABLE = "NAME"
EXIT_SUCCESS = 0
EXIT_FAILURE = 1

logger = logging.getLogger("ziggiz_courier_pickup_logcollect.client")


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser reporting usage errors with exit status 1."""

    def error(self, message: str) -> None:
        self.print_help(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=NAME,
        description=(
            "client for logcollectd: redirects stdout/stderr to a pipe and "
            "delivers the reading end to logcollectd"
        ),
    )
    parser.add_argument("-t", "--tag", type=str, help="Tag using NAME")
    parser.add_argument(
        "-a",
        "--address",
        type=str,
        default=DEFAULT_LISTEN_ADDRESS,
        help="logcollectd rendezvous address (default: %(default)s)",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"{NAME}: {__version__}"
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="CMD [ARGS]")
    return parser


def resolve_tag(tag: Optional[str], command: List[str]) -> str:
    """
    Pick the tag: explicit option, then the NAME environment variable, then the program's base name.
    """
    if tag is not None:
        return tag
    env_tag = os.environ.get(TAG_ENVIRONMENT_VARIABLE)
    if env_tag:
        return env_tag
    return os.path.basename(command[0])


def deliver_fd(fd: int, tag: str, address: str = DEFAULT_LISTEN_ADDRESS) -> None:
    """
    Hand ``fd`` over to logcollectd under ``tag``.

    Raises:
        OSError: If the request could not be sent
    """
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
        sock.sendmsg(
            [tag.encode("utf-8")],
            [(socket.SOL_SOCKET, socket.SCM_RIGHTS, array.array("i", [fd]))],
            0,
            resolve_unix_address(address),
        )


def redirect_output(fd: int) -> None:
    """
    Point stdout and stderr at ``fd``.
    """
    sys.stdout.flush()
    sys.stderr.flush()
    os.dup2(fd, sys.stderr.fileno())
    os.dup2(fd, sys.stdout.fileno())


def run(argv: Optional[List[str]] = None) -> int:
    """
    Parse arguments, hand the output over to logcollectd and exec the command.

    Only returns when the command could not be executed.
    """
    args = build_parser().parse_args(argv)

    setup_logging("INFO")

    if not args.command:
        logger.error("no command given")
        return EXIT_FAILURE

    command = args.command
    tag = resolve_tag(args.tag, command)

    try:
        read_end, write_end = os.pipe()
    except OSError as e:
        logger.error(f"pipe: {e}")
        return EXIT_FAILURE

    try:
        try:
            deliver_fd(read_end, tag, args.address)
        except OSError as e:
            logger.warning(f"sendmsg: {e}")
            logger.warning("log pipe delivery failed, continue in straight mode")
        else:
            try:
                redirect_output(write_end)
            except OSError as e:
                logger.error(f"dup2 {write_end}: {e}")
                return EXIT_FAILURE
            logger.info(f"run '{tag}'")
    finally:
        os.close(read_end)
        os.close(write_end)

    try:
        os.execvp(command[0], command)
    except OSError as e:
        logger.error(f"execvp {command[0]} ...: {e}")
    return EXIT_FAILURE


def main() -> None:
    """
    Console entry point for the logcollect helper.
    """
    sys.exit(run())


if __name__ == "__main__":
    main()
