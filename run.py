"""Entry point for serving the Enatbet API.

Starts uvicorn with the application from ``enatbet_api.app.main``.  It
is intended to be executed from the project root, for example in a
container where you only specify a single Python file to run.

Host and port are read from the environment variables ``HOST`` and
``PORT``; defaults are ``0.0.0.0`` and ``8000``.

Usage:
    python run.py
"""
import os

import uvicorn


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(
        "enatbet_api.app.main:app",
        host=host,
        port=port,
        reload=False,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        proxy_headers=True,
    )


if __name__ == "__main__":
    try:
        main()
    except (KeyboardInterrupt, SystemExit):
        pass
