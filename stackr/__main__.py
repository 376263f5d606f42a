"""Run the Stackr API server with ``python -m stackr``."""

from __future__ import annotations

import uvicorn

from app.config import get_settings


def main() -> None:
    config = get_settings()
    development = config.environment == "development"
    uvicorn.run(
        "app.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=development,
        log_level="debug" if development else "info",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
