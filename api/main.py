"""
FastAPI backend for the Shelfask application.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shelfask import settings
from shelfask.datastore import ElevatedLibrary, RowScopedLibrary
from shelfask.entitlement import has_active_entitlement
from shelfask.profiles import public_profile
from shelfask.qa import ask_library, refusal_envelope
from shelfask.result import (
    CONFIGURATION,
    FORBIDDEN,
    INVALID_REQUEST,
    NOT_FOUND,
    SESSION_EXPIRED,
    UNAUTHORIZED,
    Failure,
)
from shelfask.safety import REFUSAL
from shelfask.session import resolve_session

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Shelfask API", description="Ask questions about a personal book library")


class EmptyPreflightCORSMiddleware(CORSMiddleware):
    """CORS middleware whose accepted preflight answers carry no body."""

    def preflight_response(self, request_headers):
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            key: value for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=200, headers=headers)


app.add_middleware(
    EmptyPreflightCORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Status code, error label and caller-facing reply for each pre-pipeline failure
FAILURE_RESPONSES = {
    INVALID_REQUEST: (400, "Invalid request body", REFUSAL),
    UNAUTHORIZED: (401, "Unauthorized", REFUSAL),
    SESSION_EXPIRED: (401, "Token expired",
                      "Your session has expired. Please refresh the page and sign in again."),
    FORBIDDEN: (403, "Pro subscription required", "This feature is available to Pro users only."),
    NOT_FOUND: (404, "User not found", "Could not find that user's library."),
    CONFIGURATION: (500, "Server configuration error", REFUSAL),
}


def failure_response(failure: Failure) -> JSONResponse:
    status, error, reply = FAILURE_RESPONSES.get(failure.kind, FAILURE_RESPONSES[CONFIGURATION])
    return JSONResponse(status_code=status, content={"error": error, "reply": reply})


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok")


@app.get("/")
async def root():
    """Root endpoint for platform health checks."""
    return {"message": "Shelfask API is running", "status": "ok"}


@app.options("/api/library/ask")
async def ask_preflight() -> Response:
    return Response(status_code=200)


@app.api_route("/api/library/ask", methods=["GET", "PUT", "PATCH", "DELETE"])
async def ask_method_not_allowed() -> JSONResponse:
    return JSONResponse(status_code=405, content={"error": "Method not allowed", "reply": REFUSAL})


@app.post("/api/library/ask")
async def ask(request: Request, authorization: Optional[str] = Header(default=None)) -> JSONResponse:
    """
    Answer a question about the caller's (or a named user's) library.

    Args:
        request: JSON body with message, optional conversation and targetUsername
        authorization: ``Bearer <token>`` header

    Returns:
        ``{reply, matchedBooks}`` with HTTP 200, or an ``{error, reply}`` body
        for rejections that happen before the pipeline starts
    """
    try:
        body: Any = await request.json()
    except ValueError:
        return failure_response(Failure(INVALID_REQUEST, "body is not JSON"))

    try:
        result = await run_in_threadpool(ask_library, body, authorization)
    except Exception as e:
        logger.exception(f"Error in library/ask: {e}")
        return JSONResponse(status_code=200, content=refusal_envelope().model_dump(by_alias=True))

    if not result.ok:
        return failure_response(result)
    return JSONResponse(status_code=200, content=result.value.model_dump(by_alias=True))


@app.get("/api/subscription")
async def subscription(authorization: Optional[str] = Header(default=None)):
    """Whether the caller currently has an active paid subscription."""
    session = resolve_session(authorization)
    if not session.ok:
        return failure_response(session)
    if settings.missing_configuration():
        return failure_response(Failure(CONFIGURATION, "datastore missing"))
    store = RowScopedLibrary(settings.LIBRARY_DB_PATH, session.value.caller_id)
    is_pro = await run_in_threadpool(has_active_entitlement, store)
    return {"isPro": is_pro}


@app.get("/api/public-profile/{username}")
async def get_public_profile(username: str):
    """
    Public profile, approved books and reading stats for a username.
    """
    if settings.missing_configuration(elevated=True):
        return JSONResponse(status_code=500, content={"error": "Server configuration error"})

    elevated = ElevatedLibrary(settings.ELEVATED_DB_PATH)
    result = await run_in_threadpool(public_profile, elevated, username)
    if not result.ok:
        if result.kind == NOT_FOUND:
            return JSONResponse(status_code=404, content={"error": "Profile not found"})
        return JSONResponse(status_code=500, content={"error": "Database error"})

    headers = {
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0"
    }
    return JSONResponse(content=result.value, headers=headers)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
