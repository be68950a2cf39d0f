"""Boardroom — FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator

from boardroom.cache import ReportCache
from boardroom.config import settings
from boardroom.db.database import Database
from boardroom.errors import GenerationError
from boardroom.models.brief import ResearchContext, split_list
from boardroom.orchestrator.pipeline import ReportPipeline
from boardroom.orchestrator.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

db = Database(settings.cache_path)
rate_limiter = RateLimiter(settings.requests_per_minute)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.connect()
    await ReportCache(db).purge_expired()
    yield
    await db.close()


app = FastAPI(
    title="Boardroom",
    description="Synthetic-panel report generation with fact-checking",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request / Response models ---


class ReportRequest(BaseModel):
    industry: str = ""
    audience_titles: list[str] = []
    competitors: list[str] = []
    company_website: str = ""
    seo_keywords: list[str] = []
    company_size: list[str] = []
    company_revenue: list[str] = []
    feedback_type: str = ""
    feedback_item: str = ""

    @field_validator(
        "audience_titles", "competitors", "seo_keywords", "company_size", "company_revenue",
        mode="before",
    )
    @classmethod
    def _split_comma_list(cls, value):
        return split_list(value) if isinstance(value, str) else value

    def to_context(self) -> ResearchContext:
        return ResearchContext(**self.model_dump())


class ReportCreated(BaseModel):
    report_id: str


class ReportResponse(BaseModel):
    report_id: str
    status: str
    text: str
    qc: dict | None = None
    verified_by: list[str] = []
    warnings: list[str] = []
    partial: bool = False
    error: str | None = None


# In-memory report state keyed by report_id
_reports: dict[str, dict] = {}


# --- Routes ---


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/reports", response_model=ReportCreated)
async def create_report(req: ReportRequest):
    """Accept a topic context and start producing its report.

    Returns the report_id immediately.  Connect to the WebSocket at
    /ws/reports/{report_id} to receive text as it is generated.
    """
    report_id = str(uuid.uuid4())
    _reports[report_id] = {"status": "pending", "text": ""}

    pipeline = ReportPipeline.from_settings(settings, db, rate_limiter=rate_limiter)
    asyncio.create_task(_run_pipeline(report_id, req.to_context(), pipeline))

    return ReportCreated(report_id=report_id)


@app.get("/api/reports/{report_id}", response_model=ReportResponse)
async def get_report(report_id: str):
    """Fetch a completed (or in-progress) report."""
    report = _reports.get(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")

    return ReportResponse(
        report_id=report_id,
        status=report["status"],
        text=report["text"],
        qc=report.get("qc"),
        verified_by=report.get("verified_by", []),
        warnings=report.get("warnings", []),
        partial=report.get("partial", False),
        error=report.get("error"),
    )


# --- WebSocket ---

# Active WS connections keyed by report_id
_ws_connections: dict[str, list[WebSocket]] = {}


@app.websocket("/ws/reports/{report_id}")
async def report_ws(websocket: WebSocket, report_id: str):
    """Stream live generation updates for a report."""
    await websocket.accept()
    _ws_connections.setdefault(report_id, []).append(websocket)

    report = _reports.get(report_id)
    if report is not None and report["text"]:
        await websocket.send_json({"type": "chunk", "text": report["text"]})

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        _ws_connections.get(report_id, []).remove(websocket)


async def _broadcast(report_id: str, message: dict) -> None:
    """Send a message to all WebSocket clients watching a report."""
    for ws in list(_ws_connections.get(report_id, [])):
        try:
            await ws.send_json(message)
        except Exception:
            pass


# --- Pipeline ---


async def _run_pipeline(
    report_id: str, context: ResearchContext, pipeline: ReportPipeline
) -> None:
    """Execute the report pipeline and broadcast updates."""
    state = _reports.setdefault(report_id, {"status": "pending", "text": ""})

    async def on_chunk(chunk: str) -> None:
        state["text"] += chunk
        await _broadcast(report_id, {"type": "chunk", "text": chunk})

    async def on_status(stage: str) -> None:
        state["status"] = stage
        await _broadcast(report_id, {"type": "status", "stage": stage})

    try:
        result = await pipeline.run(context, on_chunk, on_status)
    except GenerationError as exc:
        logger.error("Report %s failed: %s", report_id, exc)
        state.update(status="failed", error=str(exc))
        await _broadcast(report_id, {"type": "error", "kind": exc.kind.value, "detail": str(exc)})
        return
    except Exception:
        logger.exception("Pipeline failed for report %s", report_id)
        state.update(status="failed", error="Report pipeline failed")
        await _broadcast(report_id, {"type": "error", "detail": "Report pipeline failed"})
        return

    qc = result.qc.to_dict()
    state.update(
        status="done",
        text=result.report,
        qc=qc,
        verified_by=result.verified_by,
        warnings=result.warnings,
        partial=result.partial,
    )
    await _broadcast(report_id, {"type": "qc", "qc": qc})
    await _broadcast(report_id, {
        "type": "report",
        "text": result.report,
        "partial": result.partial,
        "warnings": result.warnings,
    })
