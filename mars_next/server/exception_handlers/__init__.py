"""
Exception handlers for the MARS Next server.

This package contains the exception handlers that render every API error as
``{"error": ...}`` and a setup function to register them with the FastAPI application.
"""

from .global_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
