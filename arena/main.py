"""Agent Arena — FastAPI app streaming three coding agents side by side.

Loads config.yaml on startup. Exposes /agents/stream for SSE streaming,
the workspace file endpoints (list/read/create/search/apply/undo), and
operational endpoints for health, config viewing and hot-reload.

Run with ``arena-server`` or ``uvicorn arena.main:create_app --factory``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from arena.agents.gateway import GatewayClient
from arena.agents.registry import AGENT_REGISTRY, resolve_agent
from arena.config import ArenaConfig, get_config, load_config, reload_config, set_config
from arena.errors import AppError, NotFoundError, ValidationError, error_response
from arena.files.store import WorkspaceStore, build_store
from arena.runtime import execute_agent_stream, validate_stream_request
from arena.schemas import (
    AGENT_IDS,
    ApplyRequest,
    CreateEntryRequest,
    StreamRequest,
    UndoRequest,
)
from arena.sse import encode_frame
from arena.validation import validate_file_path

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _build_store(config: ArenaConfig) -> WorkspaceStore:
    return build_store(
        config.workspace.backend, config.workspace.root, config.workspace.max_file_size
    )


def create_app(
    config: ArenaConfig | None = None,
    store: WorkspaceStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the app. Without arguments, config comes from ``$ARENA_CONFIG``
    (default ``config.yaml``) and the store from its ``workspace`` section."""
    if config is None:
        config = load_config(os.environ.get("ARENA_CONFIG", "config.yaml"))
    else:
        set_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the shared HTTP client and the workspace store."""
        client = http_client or httpx.AsyncClient()
        app.state.http = client
        app.state.gateway = GatewayClient(client, config.gateway)
        app.state.store = store or _build_store(config)
        logger.info(
            f"Agent Arena started (origins={config.allowed_origins}, "
            f"environment={config.environment}, workspace={config.workspace.backend}:"
            f"{config.workspace.root}, agents={list(AGENT_IDS)})"
        )
        yield
        if http_client is None:
            await client.aclose()
        logger.info("Agent Arena shutting down")

    app = FastAPI(title="Agent Arena", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
        return JSONResponse(
            error_response(exc, get_config().is_production), status_code=exc.status_code
        )

    # -----------------------------------------------------------------------
    # Agent streaming
    # -----------------------------------------------------------------------

    def sse_error(error: AppError, agent_id: object, request_id: object) -> Response:
        frame = {
            "type": "error",
            "agentId": agent_id if isinstance(agent_id, str) else None,
            "requestId": request_id if isinstance(request_id, str) else None,
            "error": error.message,
            "code": error.code,
        }
        return Response(
            encode_frame({k: v for k, v in frame.items() if v is not None}),
            status_code=error.status_code,
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/agents")
    async def list_agents():
        """Agents available for a prompt."""
        config = get_config()
        return {
            "agents": [
                {
                    "id": agent_id,
                    "name": definition.name,
                    "description": definition.description,
                    "model": resolve_agent(agent_id, config).model,
                }
                for agent_id, definition in AGENT_REGISTRY.items()
            ]
        }

    @app.post("/agents/stream")
    async def stream_agent(body: StreamRequest, request: Request):
        """Run one agent for one prompt. Streams response as Server-Sent Events (SSE)."""
        config = get_config()
        try:
            agent_id, prompt, request_id = validate_stream_request(config, body)
        except ValidationError as e:
            logger.warning(f"Invalid stream request: {e.message}")
            return sse_error(e, body.agent_id, body.request_id)

        if not config.gateway.api_key:
            logger.error(f"{config.gateway.api_key_env} not configured")
            return sse_error(
                AppError(
                    f"{config.gateway.api_key_env} is not configured",
                    code="CONFIGURATION_ERROR",
                ),
                agent_id,
                request_id,
            )

        agent = resolve_agent(agent_id, config)
        state = request.app.state

        async def stream():
            async for frame in execute_agent_stream(
                config,
                agent,
                prompt,
                request_id,
                state.store,
                state.gateway,
                images=body.images,
            ):
                yield encode_frame(frame)

        return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    # -----------------------------------------------------------------------
    # Workspace files
    # -----------------------------------------------------------------------

    @app.get("/files")
    async def list_files(request: Request, path: str = "./"):
        entries = await request.app.state.store.list(path)
        return {"success": True, "files": [e.to_wire() for e in entries]}

    @app.get("/files/read")
    async def read_file(request: Request, path: str = ""):
        if not path:
            raise ValidationError("Path is required")
        rel = validate_file_path(path)
        content = await request.app.state.store.read(rel)
        if content is None:
            raise NotFoundError("File")
        logger.info(f"File read: path={rel}, size={len(content)}")
        return {"success": True, "content": content}

    @app.get("/files/search")
    async def search_files(request: Request, q: str = ""):
        entries = await request.app.state.store.search(q)
        return {"success": True, "files": [e.to_wire() for e in entries]}

    @app.post("/files")
    async def create_entry(body: CreateEntryRequest, request: Request):
        store = request.app.state.store
        if body.type == "directory":
            await store.make_dir(body.path)
        else:
            await store.write(body.path, body.content)
        return {"success": True}

    @app.delete("/files")
    async def clear_workspace(request: Request):
        await request.app.state.store.clear()
        return {"success": True, "message": "Workspace cleared"}

    @app.post("/files/apply")
    async def apply_file(body: ApplyRequest, request: Request):
        """Write the proposed content (Keep)."""
        rel = validate_file_path(body.file_path)
        await request.app.state.store.write(rel, body.content)
        logger.info(f"File changes applied: path={rel}, size={len(body.content)}")
        return {"success": True, "message": "File changes applied"}

    @app.put("/files/apply")
    async def revert_file(body: UndoRequest, request: Request):
        """Restore the previous content (Undo); no previous content deletes the file."""
        rel = validate_file_path(body.file_path)
        store = request.app.state.store
        if not body.old_content.strip():
            await store.delete(rel)
            return {"success": True, "message": "File deleted"}
        await store.write(rel, body.old_content)
        logger.info(f"File changes reverted: path={rel}, size={len(body.old_content)}")
        return {"success": True, "message": "File changes reverted"}

    # -----------------------------------------------------------------------
    # Operational endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health():
        """Liveness check."""
        config = get_config()
        return {
            "status": "healthy",
            "agents": len(AGENT_IDS),
            "gateway_configured": bool(config.gateway.api_key),
        }

    @app.get("/config")
    async def get_current_config():
        """Return current config as JSON (secrets live in the environment)."""
        return get_config().model_dump()

    @app.post("/reload")
    async def reload(request: Request):
        """Hot-reload config.yaml without restart.

        Gateway settings and agent overrides take effect for the next
        stream; an injected store is kept, a configured one is rebuilt.
        """
        try:
            new_config = reload_config()
        except Exception as e:
            logger.error(f"Reload failed: {e}", exc_info=True)
            raise AppError(f"Reload failed: {e}", code="RELOAD_ERROR") from e

        request.app.state.gateway = GatewayClient(request.app.state.http, new_config.gateway)
        if store is None:
            request.app.state.store = _build_store(new_config)
        return {"status": "reloaded", "environment": new_config.environment}

    return app


def main() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        create_app(),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )
