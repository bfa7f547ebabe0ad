"""Console entry point: ``canvas-backend`` runs the API under uvicorn."""

from __future__ import annotations

import uvicorn

from .app import create_app
from .core.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        # Our own handlers format every record; keep uvicorn from installing its own
        log_config=None,
    )


if __name__ == "__main__":
    main()
