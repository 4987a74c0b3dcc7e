"""
Core API backend for refdesk.

It exposes the following endpoints:
- **GET /health**                  - liveness probe for health checks.
- **POST /sessions**               - create a new session, returns a session ID.
- **GET /sessions**                - list all active sessions.
- **DELETE /sessions/{id}**        - end a session and drop its memory.
- **POST /agent**                  - one user turn: {"message": "...", "session_id": "..."}
- **POST /dispatch**               - route {"kind", "session_id", "payload"} via the dispatch table.
- **GET /circuits**                - circuit-breaker status per operation.
- **POST /circuits/{name}/reset**  - operator reset of one circuit breaker.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
)

from fastapi import (
    FastAPI,
    HTTPException,
)

from refdesk.agent.resilience import (
    CircuitBreakerStats,
    get_circuit_breaker_status,
    reset_circuit_breaker,
)
from refdesk.agent.sessions import (
    MessageDispatcher,
    SessionRegistry,
)
from refdesk.api.models import (
    DispatchRequest,
    MessageRequest,
    MessageResponse,
    SessionResponse,
)
from refdesk.common import (
    AnsiColors,
    colored_print,
)
from refdesk.config import settings
from refdesk.core.errors import (
    CircuitOpenError,
    LoopLimitExceededError,
    ResilienceExhaustedError,
    UnknownMessageKindError,
    ValidationError,
)

logger = logging.getLogger(__name__)

UNAVAILABLE_DETAIL = (
    "I'm having trouble answering right now. Please try again shortly, "
    "or contact a librarian for immediate assistance."
)


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    """Build the FastAPI app around *registry* (a settings-configured one by default)."""
    registry = registry if registry is not None else SessionRegistry()
    dispatcher = MessageDispatcher(registry)

    app = FastAPI(
        title="refdesk API", version="0.1.0", description="Virtual reference desk agent API"
    )
    app.state.registry = registry
    app.state.dispatcher = dispatcher

    # -----------------------------------------------------------------------
    # Helper functions
    # -----------------------------------------------------------------------
    async def dispatch(
        kind: str, session_id: str | None, payload: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Run the dispatcher, translating engine errors into HTTP errors."""
        try:
            return await dispatcher.dispatch(kind, session_id, payload)
        except (ValidationError, UnknownMessageKindError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (LoopLimitExceededError, CircuitOpenError, ResilienceExhaustedError) as exc:
            logger.error("Turn failed for session %s: %s", session_id, exc)
            raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
    async def create_session() -> SessionResponse:
        """Create a new conversation session."""
        session = registry.get_or_create()
        return SessionResponse(session_id=session.session_id)

    @app.get("/sessions", response_model=List[str], summary="List active sessions")
    async def list_sessions() -> List[str]:
        """List all active session IDs."""
        return registry.session_ids()

    @app.delete("/sessions/{session_id}", summary="End a session")
    async def end_session(session_id: str) -> Dict[str, Any]:
        """End a session and forget its conversation."""
        result = await dispatch("end", session_id, {})
        if not result["ended"]:
            raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
        return result

    @app.post("/agent", response_model=MessageResponse, summary="Process a message")
    async def agent_endpoint(req: MessageRequest) -> MessageResponse:
        """Process a user message with optional session context."""
        result = await dispatch("message", req.session_id, {"message": req.message})
        return MessageResponse(**result)

    @app.post("/dispatch", summary="Route a message by kind")
    async def dispatch_endpoint(req: DispatchRequest) -> Dict[str, Any]:
        """Route a message through the dispatch table."""
        return await dispatch(req.kind, req.session_id, req.payload)

    @app.get(
        "/circuits",
        response_model=Dict[str, CircuitBreakerStats],
        summary="Circuit breaker status",
    )
    async def circuits() -> Dict[str, CircuitBreakerStats]:
        """Snapshot every circuit breaker."""
        return get_circuit_breaker_status()

    @app.post("/circuits/{name}/reset", summary="Reset a circuit breaker")
    async def reset_circuit(name: str) -> dict[str, str]:
        """Close one breaker and clear its failure count."""
        if not reset_circuit_breaker(name):
            raise HTTPException(status_code=404, detail=f"Unknown circuit '{name}'")
        return {"status": "reset", "name": name}

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the app.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting refdesk API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"refdesk API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "refdesk.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m refdesk.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
