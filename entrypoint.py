import os

import uvicorn

from logging_config import get_logger, setup_logging


def main():
    # Logging first so module-level loggers in app pick up the level
    setup_logging(log_level=os.getenv("LOG_LEVEL", "DEBUG"), log_file=os.getenv("LOG_FILE", None))
    logger = get_logger(__name__)

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    reload = os.getenv("RELOAD", "0") == "1"
    logger.info(f"Starting chat gateway on {host}:{port} (reload={reload})")
    # Presence and room membership live in this process, so never more than one worker
    uvicorn.run("app:app", host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    main()
