"""
Bickqr API - URL extraction and upload ingestion for the processing pipeline.

Run with: uvicorn bickqr.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from bickqr.api import extract_router, router
from bickqr.api.routes import error_response
from bickqr.core import config
from bickqr.db import BickRepository, init_db, make_engine, make_session_factory
from bickqr.jobs import JobQueue
from bickqr.storage import R2Storage
from bickqr.workers.acquisition import SourceAcquisition


def create_app(
    repository: BickRepository = None,
    queue: JobQueue = None,
    storage: R2Storage = None,
    acquisition: SourceAcquisition = None,
    engine=None,
) -> FastAPI:
    """
    Build the app. Anything not passed in is created at startup from the
    environment and torn down on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_engine = engine or make_engine(config.DATABASE_URL)
        init_db(db_engine)
        session_factory = make_session_factory(db_engine)

        app.state.repository = repository or BickRepository(session_factory)
        app.state.queue = queue or JobQueue(session_factory)
        app.state.storage = storage or R2Storage()
        app.state.acquisition = acquisition or SourceAcquisition()
        yield
        if queue is None:
            app.state.queue.close()
        if engine is None:
            db_engine.dispose()

    app = FastAPI(title="Bickqr", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = {}
        for err in exc.errors():
            field = ".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body"
            details[field] = err.get("msg", "Invalid value")
        return error_response(400, "Validation failed", "VALIDATION_ERROR", details)

    app.include_router(extract_router)
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
