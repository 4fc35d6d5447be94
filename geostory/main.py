# geostory/main.py

import uvicorn

from geostory.config import get_settings
from geostory.main_fastapi import create_app
from geostory.observability.logger import configure_logging


def main() -> None:
    """Entry point: configure logging, build the app and serve it."""
    settings = get_settings()

    # Configure structured JSON logging as early as possible
    configure_logging(settings)

    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,  # keep our JSON handlers
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
