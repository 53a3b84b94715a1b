"""Uvicorn entrypoint for the thumbnail resolver."""

from __future__ import annotations

import uvicorn

from ..common.settings import ResolverSettings
from .app import create_app


def main() -> None:
    settings = ResolverSettings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None, proxy_headers=True)


if __name__ == "__main__":
    main()
