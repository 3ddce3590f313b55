"""
Server launcher.

Runs the FastAPI application with uvicorn on the host and port from settings.
"""

import uvicorn

from mars_next.server.core.config import settings


def main() -> None:
    uvicorn.run(
        "mars_next.server.main:app",
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
