"""QVoiceTxt HTTP gateway - FastAPI surface over one chat session."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=ROOT_DIR / ".env")

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qvoice_orchestrator.config import Config
from qvoice_orchestrator.runtime import ChatRuntime, build_runtime

from .errors import StoreError
from .models import (
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    MessagesResponse,
    RouteResultResponse,
    SessionStatusResponse,
    SpeechRequest,
    SubmitMessageRequest,
    TokenListResponse,
    UtteranceOut,
)
from .router import RouteStatus

logger = logging.getLogger(__name__)


def _runtime(request: Request) -> ChatRuntime:
    return request.app.state.runtime


def create_app(
    config: Optional[Config] = None,
    runtime_factory: Optional[Callable[[Config], ChatRuntime]] = None,
    run_scheduler: bool = True,
) -> FastAPI:
    """Build the FastAPI app.

    Args:
        config: Configuration (defaults to ``Config.from_env()``)
        runtime_factory: Override runtime construction (tests)
        run_scheduler: Start the background reminder thread on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("QVoiceTxt gateway starting up...")
        cfg = config or Config.from_env()
        cfg.validate()
        runtime = (runtime_factory or build_runtime)(cfg)
        app.state.runtime = runtime
        await runtime.start(run_scheduler=run_scheduler)
        logger.info(f"Session ready as {runtime.session.user_id}")
        yield
        await runtime.close()
        logger.info("QVoiceTxt gateway shut down.")

    app = FastAPI(
        title="QVoiceTxt Gateway",
        description="Secure-channel chat with Agent Q",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware for local UI access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        error = ErrorResponse(
            error=ErrorDetail(
                message=str(exc.detail),
                type="invalid_request_error" if exc.status_code < 500 else "server_error",
                code=str(exc.status_code),
            )
        )
        return JSONResponse(status_code=exc.status_code, content=error.model_dump())

    @app.exception_handler(StoreError)
    async def store_exception_handler(request: Request, exc: StoreError):
        logger.error(f"Store error: {exc}")
        error = ErrorResponse(error=ErrorDetail(message=str(exc), type="server_error", code="store_error"))
        return JSONResponse(status_code=503, content=error.model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        runtime = _runtime(request)
        scheduler = runtime.scheduler.stats() if runtime.scheduler else {}
        healthy = runtime.session.is_ready() and not scheduler.get("last_error")
        return HealthResponse(
            status="healthy" if healthy else "degraded",
            phase=runtime.session.phase.name,
            scheduler=scheduler,
        )

    @app.get("/v1/session", response_model=SessionStatusResponse)
    async def session_status(request: Request):
        return SessionStatusResponse(**_runtime(request).session.status_snapshot())

    @app.get("/v1/messages", response_model=MessagesResponse)
    async def list_messages(request: Request, limit: Optional[int] = None):
        runtime = _runtime(request)
        if runtime.store is None:
            raise HTTPException(status_code=503, detail="Session is not connected")
        if limit is not None and limit < 1:
            raise HTTPException(status_code=400, detail="limit must be positive")
        utterances = runtime.store.query(limit=limit)
        data = [
            UtteranceOut(
                id=u.id,
                user_id=u.user_id,
                text=runtime.codec.decode(u.token_index) if u.is_tokenized else (u.text or ""),
                is_tokenized=u.is_tokenized,
                token_index=u.token_index,
                created_at=u.created_at,
            )
            for u in utterances
        ]
        return MessagesResponse(data=data)

    @app.post("/v1/messages", response_model=RouteResultResponse)
    async def submit_message(request: Request, body: SubmitMessageRequest):
        result = await _runtime(request).session.submit(body.text)
        if result.status is RouteStatus.NOT_READY:
            raise HTTPException(status_code=503, detail="Awaiting secure channel establishment")
        if result.status is RouteStatus.BUSY:
            raise HTTPException(status_code=409, detail="Agent Q is still processing the previous message")
        if result.status is RouteStatus.EMPTY:
            raise HTTPException(status_code=400, detail="Message text cannot be empty")
        return RouteResultResponse(**result.to_dict())

    @app.post("/v1/speech")
    async def synthesize_speech(request: Request, body: SpeechRequest):
        if not body.text.strip():
            raise HTTPException(status_code=400, detail="Speech text cannot be empty")
        speech = await _runtime(request).session.speak(body.text)
        if speech.clip is None:
            raise HTTPException(status_code=502, detail=speech.error or "Speech synthesis failed")
        return Response(content=speech.clip.data, media_type=speech.clip.mime_type)

    @app.get("/v1/tokens", response_model=TokenListResponse)
    async def list_tokens(request: Request):
        return TokenListResponse(data=list(_runtime(request).codec.dictionary))

    return app
