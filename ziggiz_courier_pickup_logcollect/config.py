# -*- coding: utf-8 -*-

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2025 Ziggiz Inc.
#
# This file is part of the ziggiz-courier-core-data-processing and is licensed under the
# Business Source License 1.1. You may not use this file except in
# compliance with the License. You may obtain a copy of the License at:
# https://github.com/ziggiz-courier/ziggiz-courier-core-data-processing/blob/main/LICENSE
# Configuration module for loading and parsing configuration files

# Standard library imports
import logging
import logging.handlers

from pathlib import Path
from typing import List, Optional, Union

# Third-party imports
import yaml

from pydantic import BaseModel, Field, field_validator

# Local/package imports
from ziggiz_courier_pickup_logcollect.protocol.address import (
    DEFAULT_LISTEN_ADDRESS,
    resolve_unix_address,
)
from ziggiz_courier_pickup_logcollect.protocol.forwarder import DEFAULT_SYSLOG_ADDRESS
from ziggiz_courier_pickup_logcollect.protocol.handoff import MAX_TAG_LENGTH
from ziggiz_courier_pickup_logcollect.protocol.stream import (
    DEFAULT_READ_CHUNK_SIZE,
    READ_ERROR_CLOSE_STREAM,
    READ_ERROR_POLICIES,
)


class LoggerConfig(BaseModel):
    """
    Configuration for individual loggers.

    Attributes:
        name (str): Logger name.
        level (str): Logging level (default: "INFO").
        propagate (bool): Whether to propagate logs to parent (default: True).
    """

    name: str
    level: str = "INFO"
    propagate: bool = True


class Config(BaseModel):
    """
    Main configuration class for the Ziggiz Courier Pickup Logcollect daemon.

    This class defines all configuration options for the collector, including
    the rendezvous and syslog addresses, stream handling and logging.
    """

    # Collector configuration
    listen_address: str = DEFAULT_LISTEN_ADDRESS  # "@name" means abstract namespace
    syslog_address: str = DEFAULT_SYSLOG_ADDRESS
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE  # Bytes read per readiness event
    max_tag_length: int = MAX_TAG_LENGTH  # Longer tags are truncated
    read_error_policy: str = (
        READ_ERROR_CLOSE_STREAM  # "close_stream" or "exit" on a stream read error
    )
    pass_credentials: bool = False  # Attach sender pid/uid/gid to handoffs

    # Telemetry configuration
    enable_trace_console_export: bool = False

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s %(name)s %(message)s"
    log_date_format: str = "%Y-%m-%d %H:%M:%S"
    log_to_syslog: bool = False  # Also send the daemon's own logs to syslog_address
    loggers: List[LoggerConfig] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a valid Python logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    @field_validator("read_error_policy")
    @classmethod
    def validate_read_error_policy(cls, v: str) -> str:
        """Validate that the read error policy is known."""
        v = v.lower()
        if v not in READ_ERROR_POLICIES:
            raise ValueError(
                f"Invalid read error policy: {v}. Must be one of {list(READ_ERROR_POLICIES)}"
            )
        return v

    @field_validator("read_chunk_size", "max_tag_length")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v

    @field_validator("listen_address", "syslog_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate that a Unix socket address is not empty."""
        if not v or v == "@":
            raise ValueError("Socket address must not be empty")
        return v


def load_config(config_path: Optional[Union[str, Path]] = None) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the configuration file. If None, will look for config.yaml
                   in the current directory and default directories.

    Returns:
        A Config object containing the loaded configuration.

    Raises:
        FileNotFoundError: If the configuration file cannot be found.
        yaml.YAMLError: If the configuration file contains invalid YAML.
    """
    # Default search paths
    search_paths = [
        Path.cwd() / "config.yaml",
        Path.cwd() / "config.yml",
        Path("/etc/ziggiz-courier-pickup-logcollect/config.yaml"),
        Path("/etc/ziggiz-courier-pickup-logcollect/config.yml"),
    ]

    # If config path is provided, try that first
    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
    else:
        for path in search_paths:
            if path.exists():
                config_file = path
                break
        else:
            # No config file found, return default configuration
            logging.warning("No configuration file found, using default configuration")
            return Config()

    # Load YAML configuration
    with open(config_file, "r") as f:
        try:
            config_data = yaml.safe_load(f) or {}
            return Config(**config_data)
        except yaml.YAMLError as e:
            logging.error("Error parsing configuration file", extra={"error": e})
            raise
        except Exception as e:
            logging.error("Error loading configuration", extra={"error": e})
            raise


class SafeExtraFormatter(logging.Formatter):
    """
    Custom formatter that substitutes missing extra fields with a blank string.
    """

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "tag"):
            record.tag = ""
        return super().format(record)


def configure_logging(config: "Config") -> None:
    """
    Configure logging based on the provided configuration.

    Args:
        config: The loaded configuration object.
    """
    # Reset logging configuration
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    # Configure root logger
    level = getattr(logging, config.log_level, logging.INFO)
    formatter = SafeExtraFormatter(config.log_format, datefmt=config.log_date_format)

    # Add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logging.root.setLevel(level)
    logging.root.addHandler(console_handler)

    # Mirror the daemon's own messages to syslog under the daemon facility
    if config.log_to_syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=resolve_unix_address(config.syslog_address),
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
        except OSError as e:
            logging.warning(
                "Could not attach syslog log handler", extra={"error": str(e)}
            )
        else:
            syslog_handler.ident = "logcollectd: "
            syslog_handler.setFormatter(logging.Formatter("%(message)s"))
            logging.root.addHandler(syslog_handler)

    # Configure additional loggers from config
    for logger_config in config.loggers:
        logger = logging.getLogger(logger_config.name)
        logger.setLevel(getattr(logging, logger_config.level, logging.INFO))
        logger.propagate = logger_config.propagate
