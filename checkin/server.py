from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .clock import RealClock
from .config import CheckinConfig
from .orchestrator import CallOrchestrator
from .protocol import StartCallRequest, TurnRequest, TurnResponse
from .provider import build_llm_client
from .records import FanoutSummarySink, JsonlSummarySink, PatientRecords
from .session_store import SessionNotFound


def build_orchestrator(cfg: Optional[CheckinConfig] = None) -> CallOrchestrator:
    cfg = cfg or CheckinConfig.from_env()
    records = PatientRecords()
    sink: Any = records
    if cfg.summary_jsonl_path:
        sink = FanoutSummarySink([records, JsonlSummarySink(cfg.summary_jsonl_path)])
    return CallOrchestrator(
        config=cfg,
        clock=RealClock(),
        llm=build_llm_client(cfg),
        context_store=records,
        summary_sink=sink,
    )


def create_app(orchestrator: Optional[CallOrchestrator] = None) -> FastAPI:
    orch = orchestrator if orchestrator is not None else build_orchestrator()

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await orch.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.orchestrator = orch

    @app.exception_handler(SessionNotFound)
    async def _unknown_session(request: Request, exc: SessionNotFound) -> JSONResponse:
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=404)

    @app.get("/healthz")
    async def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        return PlainTextResponse(orch.metrics.render())

    @app.post("/calls/{session_id}/start")
    async def start_call(session_id: str, body: StartCallRequest) -> TurnResponse:
        outcome = await orch.start_call(session_id, body.to_patient())
        return TurnResponse.from_outcome(outcome)

    @app.post("/calls/{session_id}/turns")
    async def handle_turn(session_id: str, body: TurnRequest) -> TurnResponse:
        outcome = await orch.handle_turn(session_id, body.utterance, stage_hint=body.stage_hint)
        return TurnResponse.from_outcome(outcome)

    @app.get("/calls/{session_id}")
    async def call_state(session_id: str) -> JSONResponse:
        return JSONResponse({"ok": True, "call": orch.snapshot(session_id)})

    return app


app = create_app()
