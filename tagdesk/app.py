"""
FastAPI application entry point for the tagdesk backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from tagdesk.config import get_settings
from tagdesk.exception_handlers import setup_exception_handlers
from tagdesk.routes import router

LOG_FORMAT = "%(name)s %(levelname)s %(asctime)s %(message)s"


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )
    app = FastAPI(title="tagdesk", version="0.1.0")
    setup_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
