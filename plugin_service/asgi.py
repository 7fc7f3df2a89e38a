"""
ASGI entry point for uvicorn.
Creates FastAPI app at import time so uvicorn can use --reload:

    uvicorn plugin_service.asgi:app --reload
"""
from .app import create_app

app = create_app()
