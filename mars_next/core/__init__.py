"""
Core utilities for MARS Next.

This package provides core functionality including logging configuration
and Logfire monitoring.
"""

from mars_next.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
