"""
Contractor OS Shared Library
============================

Common utilities, configuration, and infrastructure clients used by the
classification service.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: PostgreSQL and Redis client wrappers

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "Contractor OS Team"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
