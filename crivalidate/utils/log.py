# Copyright The Volcano Authors.
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
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import crivalidate.constants as constants
from crivalidate.utils.utils import get_env

ROOT_LOGGER = "crivalidate"

_FORMATTER = logging.Formatter(
    '%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s'
)


def _format_context(context: Dict[str, Any]) -> str:
    return " | ".join(f"{k}={v}" for k, v in context.items())


def _level(name: Optional[str]) -> int:
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def _add_file_handler(root_logger: logging.Logger, log_file: str):
    path = os.path.abspath(log_file)
    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == path:
            return
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(_FORMATTER)
    root_logger.addHandler(file_handler)


def _configure_handlers(log_file: Optional[str], level: int):
    """Configure handlers at the crivalidate root logger"""
    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(level)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_FORMATTER)
    root_logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        _add_file_handler(root_logger, log_file)


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Apply run settings to the crivalidate root logger

    Handlers are set up on first use from the environment; this lets a
    TestContext override the level and add a log file afterwards.
    """
    root_logger = logging.getLogger(ROOT_LOGGER)
    if not StructuredLogger._global_handlers_configured:
        _configure_handlers(None, _level(level))
        StructuredLogger._global_handlers_configured = True
    if level:
        root_logger.setLevel(_level(level))
    if log_file:
        _add_file_handler(root_logger, log_file)


class StructuredLogger:
    _global_handlers_configured = False

    def __init__(self, name: str, log_file: Optional[str] = None, level: Optional[str] = None):
        """
        Create a hierarchical logger below the crivalidate root
        Example:
        - crivalidate (parent)
          - crivalidate.framework (child)
            - crivalidate.framework.lifecycle (grandchild)
        """
        self._logger = logging.getLogger(name)
        self._logger.propagate = True

        # Only configure handlers once at the package root
        if not StructuredLogger._global_handlers_configured:
            _configure_handlers(
                log_file or get_env(constants.LOG_FILE_ENV),
                _level(level or get_env(constants.LOG_LEVEL_ENV, "INFO")),
            )
            StructuredLogger._global_handlers_configured = True

    def setLevel(self, level):
        self._logger.setLevel(level)

    def info(self, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, message, context)

    def error(self, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.ERROR, message, context)

    def debug(self, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, message, context)

    def warning(self, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, message, context)

    def _log(self, level: int, message: str, context: Optional[Dict[str, Any]]):
        # Render context only if present
        if context:
            message = f"{message} | {_format_context(context)}"

        self._logger.log(level, message)


def get_logger(name: str) -> StructuredLogger:
    """Factory function to get a hierarchical logger"""
    return StructuredLogger(name)
