# -*- coding: utf-8 -*-
# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# OpenTelemetry setup for Ziggiz Courier Pickup Logcollect
#
# This module configures OpenTelemetry tracing for the log collector daemon.
# Spans are only exported to the console when explicitly enabled, because the
# daemon's own standard streams may themselves be collected.
# In production, configure an OTLP exporter via environment variables.

# Third-party imports
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer

SERVICE_NAME = "ziggiz-courier-pickup-logcollect"

# Create an OpenTelemetry resource for the service
resource = Resource.create({"service.name": SERVICE_NAME})
tracer_provider = TracerProvider(resource=resource)
trace.set_tracer_provider(tracer_provider)

_console_exporter_installed = False


def configure_tracing(enable_console_export: bool = False) -> None:
    """
    Attach a console span exporter to the process tracer provider.

    Args:
        enable_console_export: Whether spans should be printed to the console
    """
    global _console_exporter_installed
    if enable_console_export and not _console_exporter_installed:
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        _console_exporter_installed = True


def get_tracer() -> Tracer:
    return trace.get_tracer(SERVICE_NAME)
