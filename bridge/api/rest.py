"""
REST API for the Transfer Manager

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - Modern, fast, auto-docs, async support
2. Flask - Simple, widely used, but sync-focused
3. aiohttp - Async, but less features

Decision: FastAPI
- Runs on the same event loop as the transfers
- Automatic OpenAPI documentation
- Pydantic integration for validation (IP literals, port ranges)

This is the surface a desktop or web UI drives: pick a file, start a
send, watch progress over Server-Sent Events, cancel, show the result.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, List
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, IPvAnyAddress

from .. import __version__
from ..manager import TransferManager

logger = logging.getLogger(__name__)

# Global reference to the transfer manager (set when app is created)
_manager: Optional[TransferManager] = None


# === Pydantic Models ===

class SendRequest(BaseModel):
    """Request to send a file."""
    address: IPvAnyAddress
    port: int = Field(default=12345, ge=1, le=65535)
    file_path: str


class ReceiveRequest(BaseModel):
    """Request to listen for one file."""
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    dest_dir: Optional[str] = None


class JobInfo(BaseModel):
    """A background transfer."""
    id: str
    direction: str
    peer: Optional[str]
    file_path: Optional[str]
    port: Optional[int]
    progress: float
    done: bool
    created_at: float
    finished_at: Optional[float]
    session: Optional[dict]
    result: Optional[dict]


# === API Creation ===

def create_app(manager: TransferManager = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        manager: TransferManager to control (a default one if not given)

    Returns:
        FastAPI application
    """
    global _manager
    _manager = manager or TransferManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("API server starting...")
        yield
        logger.info("API server stopping, cancelling active transfers...")
        await _manager.shutdown()

    app = FastAPI(
        title="Bridge File Transfer API",
        description="Start, watch and cancel direct peer-to-peer file transfers",
        version=__version__,
        lifespan=lifespan,
    )

    # Add CORS middleware to allow frontend connections
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_job(job_id: str):
        job = _manager.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=f"Unknown transfer: {job_id}")
        return job

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "Bridge",
            "version": __version__,
            "active_transfers": len(_manager.active_jobs),
        }

    @app.get("/stats", tags=["General"])
    async def get_stats():
        """Get transfer statistics."""
        return _manager.get_stats()

    # === Transfers ===

    @app.get("/transfers", response_model=List[JobInfo], tags=["Transfers"])
    async def list_transfers():
        """List all transfers, oldest first."""
        return [job.to_dict() for job in _manager.list_jobs()]

    @app.post("/transfers/send", response_model=JobInfo, status_code=202, tags=["Transfers"])
    async def send_file(request: SendRequest):
        """Send a file to a listening peer."""
        file_path = Path(request.file_path)

        # Handle relative paths - resolve to absolute
        if not file_path.is_absolute():
            file_path = file_path.resolve()

        if not file_path.exists():
            raise HTTPException(status_code=404, detail=f"File not found: {file_path}")

        if not file_path.is_file():
            raise HTTPException(status_code=400, detail=f"Not a file: {file_path}")

        logger.info(f"Send request: {file_path} -> {request.address}:{request.port}")
        job = await _manager.start_send(str(request.address), request.port, file_path)
        return job.to_dict()

    @app.post("/transfers/receive", response_model=JobInfo, status_code=202, tags=["Transfers"])
    async def receive_file(request: ReceiveRequest):
        """Listen for one incoming file."""
        job = await _manager.start_receive(request.port, request.dest_dir)
        return job.to_dict()

    @app.get("/transfers/{job_id}", response_model=JobInfo, tags=["Transfers"])
    async def get_transfer(job_id: str):
        """Get one transfer."""
        return get_job(job_id).to_dict()

    @app.delete("/transfers/{job_id}", response_model=JobInfo, tags=["Transfers"])
    async def cancel_transfer(job_id: str):
        """Cancel a transfer and return its final state."""
        get_job(job_id)
        job = await _manager.cancel(job_id)
        return job.to_dict()

    @app.get("/transfers/{job_id}/events", tags=["Transfers"])
    async def transfer_events(job_id: str):
        """
        Stream transfer progress as Server-Sent Events.

        Sends `progress` events while the transfer runs and a final
        `result` event with the whole job, then closes.
        """
        get_job(job_id)
        queue = _manager.subscribe(job_id)

        async def event_generator():
            """Generate SSE events."""
            try:
                while True:
                    try:
                        # Wait for progress update or timeout
                        event = await asyncio.wait_for(queue.get(), timeout=0.5)
                    except asyncio.TimeoutError:
                        # Send heartbeat
                        yield ": heartbeat\n\n"
                        continue

                    yield f"data: {json.dumps(event)}\n\n"
                    if event['event'] == 'result':
                        break
            finally:
                _manager.unsubscribe(job_id, queue)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            }
        )

    return app


async def run_api_server(manager: TransferManager, host: str = "127.0.0.1",
                         port: int = 8080):
    """
    Run the API server.

    Args:
        manager: TransferManager instance
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(manager)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=manager.config.log_level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()
