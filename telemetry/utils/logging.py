# =============================================
# File: telemetry/utils/logging.py
# Purpose: Logging configuration (loguru file sink for service diagnostics)
# =============================================
import os

from loguru import logger

LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")

if LOG_FILE:
    logger.add(LOG_FILE, rotation="10 MB", level=os.getenv("LOG_LEVEL", "INFO").upper())
