# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Unix domain socket address helpers

# Abstract namespace addresses are written with a leading "@" in configuration
ABSTRACT_PREFIX = "@"

DEFAULT_LISTEN_ADDRESS = "@logcollectd"


def resolve_unix_address(address: str) -> str:
    """
    Convert a configured address into the form accepted by ``socket.bind``/``connect``.

    ``@name`` maps to the abstract address ``\\0name``; anything else is
    returned unchanged and treated as a filesystem path.
    """
    if address.startswith(ABSTRACT_PREFIX):
        return "\0" + address[len(ABSTRACT_PREFIX) :]
    return address


def is_abstract_address(address: str) -> bool:
    return address.startswith(ABSTRACT_PREFIX) or address.startswith("\0")
