"""
MARS Next Server Package.

This package contains the web server implementation for the MARS Next service.
It includes the API definition, core service logic, and configuration.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Core configurations, constants and database connections.
    exception_handlers: Rendering of API errors.
    middleware: Request tracing.
    services: Chat service, SSE transport and request dependencies.
"""
