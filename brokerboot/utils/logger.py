# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Logging configuration for brokerboot.

Container entrypoints log JSON lines by default so that the output of every
node can be collected by ``docker compose logs`` and parsed downstream. Operators
running the CLI interactively can switch to a human-readable format.
"""

import json
import logging
import sys
from enum import Enum
from typing import Optional, Union


class LogFormat(str, Enum):
    """Output format of log records."""
    JSON = "json"
    HUMAN = "human"


HUMAN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logger(
    name: str = "brokerboot",
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    log_format: LogFormat = LogFormat.HUMAN,
) -> logging.Logger:
    """
    Setup and configure a logger for brokerboot.

    Args:
        name: Logger name
        level: Logging level
        format_string: Custom format string for human-readable messages
        log_format: Whether to emit JSON lines or human-readable text

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if log_format == LogFormat.JSON:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(format_string or HUMAN_FORMAT)
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    return logger


def configure_logging(
    level: Union[str, int] = "INFO",
    human_readable: bool = False,
) -> logging.Logger:
    """Reconfigure the package logger from CLI flags or environment.

    Args:
        level: Level name (``"DEBUG"``) or numeric level
        human_readable: Use the human-readable format instead of JSON

    Returns:
        The reconfigured package logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    log_format = LogFormat.HUMAN if human_readable else LogFormat.JSON
    return setup_logger(level=level, log_format=log_format)


# Default logger instance
logger = setup_logger()
