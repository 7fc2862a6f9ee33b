# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Exception types shared by the log collector daemon and client


class LogCollectError(Exception):
    """
    Base class for all log collector errors.
    """


class HandoffError(LogCollectError):
    """
    Raised when a file descriptor handoff request is malformed.

    The listener catches this per request; it never terminates the daemon.
    """


class FatalCollectorError(LogCollectError):
    """
    Raised when a condition requires the whole daemon to stop.

    Only used for stream read errors when the ``exit`` read error policy is
    configured.
    """
