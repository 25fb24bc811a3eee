"""
Run the gateway: python -m smartfarm
"""
import logging

import uvicorn

from smartfarm.database import settings
from smartfarm.main import create_app


def main():
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("smartfarm")

    app = create_app()
    logger.info(f"SmartFarm gateway on http://{settings.host}:{settings.port} (API under /api/v1)")
    # uvicorn handles SIGINT/SIGTERM and runs the shutdown hook before exiting 0
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
