"""Run the Outfit360 API with uvicorn: ``python -m outfit360``."""

from __future__ import annotations

import uvicorn

from outfit360.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("outfit360.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
