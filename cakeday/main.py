from __future__ import annotations

import logging
import os

import uvicorn


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(log_level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def main() -> None:
    setup_logging(os.getenv("CAKEDAY_LOG_LEVEL", "INFO"))
    host = os.getenv("CAKEDAY_HOST", "0.0.0.0")
    port = int(os.getenv("CAKEDAY_PORT", "8080"))
    uvicorn.run("cakeday.web_admin:app", host=host, port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
