"""vidscript HTTP API — FastAPI endpoints for the extraction pipeline.

Usage:
    uvicorn vidscript.api:app --port 8080

Authentication happens upstream: the gateway forwards the account id and
tier in ``X-User-Id`` / ``X-User-Tier``. Requests without them can only use
the guest endpoint.
"""

from __future__ import annotations

import json
import logging
import queue
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from .errors import ErrorKind
from .exporter import MIME_TYPES, format_transcript, parse_format
from .orchestrator import Orchestrator, get_orchestrator
from .progress import ProgressRegistry
from .schemas import ExtractionFailure, ExtractionOk
from .store import ExtractionStore

logger = logging.getLogger(__name__)

app = FastAPI(title="vidscript", version="0.1.0")

_registry = ProgressRegistry()

_STATUS_BY_KIND = {
    ErrorKind.INVALID_URL: 400,
    ErrorKind.UNSUPPORTED_PLATFORM: 400,
    ErrorKind.DURATION_EXCEEDED: 400,
    ErrorKind.UNSUPPORTED_EXPORT_FORMAT: 400,
    ErrorKind.QUOTA_EXCEEDED: 429,
}

_TERMINAL_STAGES = {"completed", "failed"}


class ExtractRequest(BaseModel):
    url: str
    language: Optional[str] = None
    session_id: Optional[str] = None


def get_registry() -> ProgressRegistry:
    return _registry


def get_extraction_store(orchestrator: Orchestrator = Depends(get_orchestrator)) -> ExtractionStore:
    store = orchestrator.extractions
    if not isinstance(store, ExtractionStore):
        raise HTTPException(status_code=501, detail="Extraction history is not available")
    return store


def client_ip_of(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _respond(result: ExtractionOk | ExtractionFailure) -> JSONResponse:
    if isinstance(result, ExtractionFailure):
        status = _STATUS_BY_KIND.get(result.error_kind, 500)
        return JSONResponse(status_code=status, content=result.model_dump(mode="json"))
    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))


# ── Routes ───────────────────────────────────────────────────────


@app.get("/health")
def health(orchestrator: Orchestrator = Depends(get_orchestrator)):
    services = orchestrator.check_services()
    return {"status": "ok" if all(services.values()) else "degraded", "services": services}


@app.post("/extract/guest")
def extract_guest(
    req: ExtractRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    registry: ProgressRegistry = Depends(get_registry),
):
    result = orchestrator.extract_guest(
        req.url,
        client_ip_of(request),
        language=req.language,
        progress=registry.reporter(req.session_id),
    )
    return _respond(result)


@app.post("/extract")
def extract(
    req: ExtractRequest,
    x_user_id: Optional[str] = Header(None),
    x_user_tier: str = Header("free"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    registry: ProgressRegistry = Depends(get_registry),
):
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    result = orchestrator.extract_authenticated(
        req.url,
        x_user_id,
        language=req.language,
        tier=x_user_tier,
        progress=registry.reporter(req.session_id),
    )
    return _respond(result)


@app.get("/extractions")
def list_extractions(
    limit: int = 10,
    offset: int = 0,
    x_user_id: Optional[str] = Header(None),
    store: ExtractionStore = Depends(get_extraction_store),
):
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    records = store.list_extractions(x_user_id, limit=limit, offset=offset)
    return [r.model_dump(mode="json") for r in records]


def _load_visible(store: ExtractionStore, extraction_id: str, user_id: Optional[str]):
    record = store.get_extraction(extraction_id)
    # Account records are private to their owner; guest records are addressable by id.
    if record is None or (record.requester is not None and record.requester != user_id):
        raise HTTPException(status_code=404, detail="Extraction not found")
    return record


@app.get("/extractions/{extraction_id}")
def get_extraction(
    extraction_id: str,
    x_user_id: Optional[str] = Header(None),
    store: ExtractionStore = Depends(get_extraction_store),
):
    return _load_visible(store, extraction_id, x_user_id).model_dump(mode="json")


@app.get("/extractions/{extraction_id}/export")
def export_extraction(
    extraction_id: str,
    format: str = "txt",
    x_user_id: Optional[str] = Header(None),
    store: ExtractionStore = Depends(get_extraction_store),
):
    export_format = parse_format(format)
    if export_format is None:
        failure = ExtractionFailure(
            error_kind=ErrorKind.UNSUPPORTED_EXPORT_FORMAT,
            message=f"Unsupported export format: {format}",
            details={"supported": [f.value for f in MIME_TYPES]},
        )
        return _respond(failure)

    record = _load_visible(store, extraction_id, x_user_id)
    if record.transcript is None:
        raise HTTPException(status_code=404, detail="Extraction has no transcript")

    content = format_transcript(record.transcript, export_format)
    filename = f"transcript-{record.id}.{export_format.value}"
    return Response(
        content=content,
        media_type=MIME_TYPES[export_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── Progress (server-sent events) ────────────────────────────────


def _sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def event_stream(registry: ProgressRegistry, session_id: str,
                 keepalive_seconds: float = 15.0, max_idle: int = 40) -> Iterator[str]:
    """SSE frames for one session: ``connected``, progress events, then ``complete``.

    The session is closed when the stream ends, whether by a terminal stage,
    by ``max_idle`` consecutive keepalives, or by the client going away.
    """
    channel = registry.open(session_id)
    try:
        yield _sse("connected", {"session_id": session_id})
        idle = 0
        while idle < max_idle:
            try:
                event = channel.get(timeout=keepalive_seconds)
            except queue.Empty:
                idle += 1
                yield ": keepalive\n\n"
                continue
            idle = 0
            yield _sse("progress", event.model_dump(mode="json"))
            if event.stage in _TERMINAL_STAGES:
                break
        yield _sse("complete", {"session_id": session_id})
    finally:
        registry.close(session_id)


@app.get("/progress/{session_id}")
def progress(session_id: str, registry: ProgressRegistry = Depends(get_registry)):
    return StreamingResponse(
        event_stream(registry, session_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
