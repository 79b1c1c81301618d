"""Main entry point for Shelfguard."""

import uvicorn

from shelfguard.config import get_settings


def main() -> None:
    """Run the Shelfguard server."""
    settings = get_settings()

    uvicorn.run(
        "shelfguard.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=False,  # request logging is done by our middleware
    )


if __name__ == "__main__":
    main()
