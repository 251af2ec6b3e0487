from __future__ import annotations

import os

import uvicorn

from icsync.log import setup_logging


def main() -> None:
    host = os.getenv("ICSYNC_HOST", "0.0.0.0")
    port = int(os.getenv("ICSYNC_PORT", "8080"))
    setup_logging(os.getenv("ICSYNC_LOG_LEVEL", "INFO"))
    uvicorn.run("icsync.web_admin:create_app", factory=True, host=host, port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
