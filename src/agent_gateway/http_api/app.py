import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response
from pydantic import BaseModel

from agent_gateway.app_container import GatewayContainer
from agent_gateway.domain.contracts import ExecutionRequest
from agent_gateway.domain.operations import OperationType
from agent_gateway.errors import InvalidSessionIdError
from agent_gateway.persistence.session_store import is_valid_session_id
from agent_gateway.presentation.session_links import generate_session_links, resolve_base_url
from agent_gateway.services.artifact_cache import ArtifactCache
from agent_gateway.util import sanitize_bot_mentions

logger = logging.getLogger(__name__)

MAX_COMMAND_LENGTH = 10000
API_SECRET_NAME = "CLAUDE_API_SECRET"


class ExecuteRequestBody(BaseModel):
    command: str = ""
    repo: Optional[str] = None
    sessionId: Optional[str] = None


def create_app(container: GatewayContainer) -> FastAPI:
    app = FastAPI(title="Agent Gateway", version="0.1.0")
    store = container.store
    config = container.config

    def _error(status_code: int, error: str, message: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": error, "message": message})

    def _session_or_404(session_id: str):
        if not is_valid_session_id(session_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return store.get_session(session_id)

    def _artifact(
        session_id: str,
        reader: Callable[[str], Optional[str]],
        label: str,
    ) -> str:
        if not is_valid_session_id(session_id):
            raise HTTPException(status_code=404, detail=f"{label} not found")
        content = reader(session_id)
        if content is None:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return content

    def _cached_or_redirect(session_id: str, artifact: str, reader, cache: ArtifactCache) -> Response:
        if is_valid_session_id(session_id) and reader(session_id) is not None:
            return RedirectResponse(url=f"/sessions/{session_id}/{artifact}", status_code=302)
        item = cache.get(session_id)
        if item is None:
            raise HTTPException(status_code=404, detail=f"{artifact.capitalize()} not found")
        return PlainTextResponse(content=item.content, headers={"X-Operation-ID": item.operation_id})

    @app.on_event("startup")
    async def _start_sweepers() -> None:
        await container.start_background()

    @app.on_event("shutdown")
    async def _stop_sweepers() -> None:
        await container.stop_background()

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        docker_ok = container.docker.docker_available()
        image_ok = await container.docker.image_exists() if docker_ok else False
        return {
            "status": "ok" if docker_ok and image_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "docker": {"available": docker_ok, "image": config.image, "imageAvailable": image_ok},
            "testMode": config.test_mode,
            "pendingOperations": container.tracker.stats().total,
        }

    @app.get("/sessions")
    async def list_sessions() -> Dict[str, Any]:
        sessions = [meta.to_dict() for meta in store.list_sessions()]
        return {"sessions": sessions, "count": len(sessions)}

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        session = _session_or_404(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session.summary()

    @app.get("/sessions/{session_id}/prompt")
    async def get_prompt(session_id: str) -> PlainTextResponse:
        content = _artifact(session_id, store.get_prompt, "Prompt")
        return PlainTextResponse(content=content, headers={"X-Session-ID": session_id})

    @app.get("/sessions/{session_id}/response")
    async def get_response(session_id: str) -> PlainTextResponse:
        content = _artifact(session_id, store.get_response, "Response")
        return PlainTextResponse(content=content, headers={"X-Session-ID": session_id})

    @app.get("/sessions/{session_id}/trace")
    async def get_trace(session_id: str) -> HTMLResponse:
        content = _artifact(session_id, store.get_trace_html, "Trace")
        return HTMLResponse(content=content, headers={"X-Session-ID": session_id})

    @app.get("/sessions/{session_id}/trace.jsonl")
    async def get_trace_jsonl(session_id: str) -> Response:
        content = _artifact(session_id, store.get_trace_jsonl, "Trace JSONL")
        headers = {
            "X-Session-ID": session_id,
            "Content-Disposition": f'attachment; filename="trace-{session_id}.jsonl"',
        }
        return Response(content=content, media_type="application/x-ndjson", headers=headers)

    @app.get("/prompts/{operation_id}")
    async def get_cached_prompt(operation_id: str) -> Response:
        return _cached_or_redirect(operation_id, "prompt", store.get_prompt, container.prompt_cache)

    @app.get("/responses/{operation_id}")
    async def get_cached_response(operation_id: str) -> Response:
        return _cached_or_redirect(operation_id, "response", store.get_response, container.response_cache)

    @app.post("/api/claude/execute")
    async def execute(request: Request, body: ExecuteRequestBody) -> JSONResponse:
        expected = container.credentials.resolve(API_SECRET_NAME)
        if not expected:
            logger.error("%s not configured", API_SECRET_NAME)
            return _error(500, "Internal server error", "API authentication not configured")
        header = (request.headers.get("authorization") or "").strip()
        if not header.lower().startswith("bearer "):
            logger.warning("Missing or invalid authorization header")
            return _error(401, "Unauthorized", "Missing or invalid authorization header")
        if not secrets.compare_digest(header[7:].strip(), expected):
            logger.warning("Invalid API token attempt")
            return _error(401, "Unauthorized", "Invalid API token")

        command = body.command or ""
        if not command.strip():
            return _error(400, "Bad Request", "Missing or invalid command in request body")
        if len(command) > MAX_COMMAND_LENGTH:
            return _error(400, "Bad Request", f"Command exceeds maximum length of {MAX_COMMAND_LENGTH} characters")

        command = sanitize_bot_mentions(command, config.bot_username)
        logger.info("Processing execute request (command_len=%d)", len(command))
        try:
            result = await container.orchestrator.execute(
                ExecutionRequest(
                    command=command,
                    operation_type=OperationType.DEFAULT,
                    repo_full_name=body.repo or None,
                    session_id=body.sessionId or None,
                )
            )
        except InvalidSessionIdError as exc:
            return _error(400, "Bad Request", str(exc))

        metadata = {
            "commandLength": len(command),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "durationMs": result.duration_ms,
        }
        if not result.success:
            return JSONResponse(
                status_code=500,
                content={
                    "status": "error",
                    "sessionId": result.session_id,
                    "error": result.error or "Command execution failed",
                    "errorCode": result.error_code,
                    "metadata": metadata,
                },
            )
        base_url = resolve_base_url(request.headers, request.url.scheme, config.base_url)
        links = generate_session_links(result.session_id, base_url, result.session_path)
        return JSONResponse(
            content={
                "status": "success",
                "sessionId": result.session_id,
                "result": result.response,
                "links": links.as_dict(),
                "metadata": metadata,
            }
        )

    return app
