#!/usr/bin/env python3
"""
Plugin Service: FastAPI приложение управления плагинами.
"""

import uvicorn

from .app import create_app
from .config import ServiceSettings


def main() -> None:
    settings = ServiceSettings.from_env()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
