#!/usr/bin/env python3

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from cradle.routes import api
from cradle.configs import OPTIONS, LOG_LEVEL
from cradle.core.api import WaitlistAPI
from cradle.core.db import Database
from cradle.core.exceptions import CradleAPIError
from cradle import __version__ as VERSION

logging.basicConfig(level=LOG_LEVEL.upper())


def create_app(waitlist=None):
    """Build the application around `waitlist`, or a database-backed one."""
    app = FastAPI(
        title="Cradle API",
        description="Cradle: waitlist priority and capacity offers for daycares",
        version=VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.waitlist = waitlist or WaitlistAPI(Database().init())
    app.add_exception_handler(CradleAPIError, api.cradle_error_handler)
    app.include_router(api.router, prefix="/v1/api")
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("cradle.app:create_app", factory=True, **OPTIONS)
