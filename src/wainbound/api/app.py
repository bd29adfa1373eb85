"""ASGI entry point: uvicorn wainbound.api.app:app"""

from .factory import create_app

app = create_app()
