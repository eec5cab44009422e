# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
Process-wide loguru configuration. Importing this module installs the sinks.
"""

import sys
from pathlib import Path

from loguru import logger

from repo_preview.config import PreviewConfig

_config = PreviewConfig()
LOG_LEVEL = _config.log_level
LOG_DIR = Path(_config.log_dir)

logger.remove()
logger.configure(extra={"source": "repo-preview"})

# Human-readable console output
logger.add(
    sys.stderr,
    level=LOG_LEVEL,
    format=(
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        "<cyan>{extra[source]}</cyan> | <level>{message}</level>"
    ),
)

# Structured JSON file for later analysis
LOG_DIR.mkdir(parents=True, exist_ok=True)
logger.add(
    LOG_DIR / "app.log",
    level=LOG_LEVEL,
    serialize=True,
    rotation="10 MB",
    retention="7 days",
    enqueue=True,
)

__all__ = ["logger"]
