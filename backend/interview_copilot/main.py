from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler

from interview_copilot.config import Settings
from interview_copilot.deps import get_session_manager
from interview_copilot.errors import (
    ClassifierError,
    InterviewNotFoundError,
    MissingDataError,
    ScorecardParseError,
    SessionClosedError,
)
from interview_copilot.models.base import init_db
from interview_copilot.api.interviews import router as interviews_router
from interview_copilot.api.settings import router as settings_router


settings = Settings()


def create_app() -> FastAPI:
    app = FastAPI(title="Interview Copilot Backend", version="0.1.0")

    # CORS for the local review dashboard and the capture extension
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_origin_regex=r"chrome-extension://.*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        settings.ensure_dirs()
        # Minimal structured logging to local file
        try:
            log_file = settings.logs_dir / "backend.log"
            handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=2)
            formatter = logging.Formatter(
                fmt='%(asctime)s %(levelname)s %(name)s %(message)s'
            )
            handler.setFormatter(formatter)
            root = logging.getLogger()
            if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
                root.addHandler(handler)
            root.setLevel(logging.INFO)
        except OSError:
            logging.getLogger("interview_copilot").warning("File logging unavailable", exc_info=True)
        init_db()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        # Flush and analyze whatever live sessions still hold
        await get_session_manager().shutdown_all()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(interviews_router)
    app.include_router(settings_router)

    @app.exception_handler(InterviewNotFoundError)
    async def _not_found_handler(request: Request, exc: InterviewNotFoundError):  # type: ignore[override]
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(MissingDataError)
    async def _missing_data_handler(request: Request, exc: MissingDataError):  # type: ignore[override]
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(SessionClosedError)
    async def _session_closed_handler(request: Request, exc: SessionClosedError):  # type: ignore[override]
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(ScorecardParseError)
    async def _scorecard_parse_handler(request: Request, exc: ScorecardParseError):  # type: ignore[override]
        logging.getLogger("interview_copilot.scorecard").warning("Scorecard parse failed: %s", exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.exception_handler(ClassifierError)
    async def _classifier_handler(request: Request, exc: ClassifierError):  # type: ignore[override]
        logging.getLogger("interview_copilot.llm").warning("Classifier call failed: %s", exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        logging.getLogger("interview_copilot").exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Interview Copilot Backend Server")
    parser.add_argument("--host", default=settings.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev only)")

    args = parser.parse_args()

    uvicorn.run(
        "interview_copilot.main:app" if args.reload else app,
        host=args.host,
        port=args.port,
        reload=args.reload
    )
