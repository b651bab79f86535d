from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from .config import Settings, get_settings
from .db import StoreUnavailableError, get_engine
from .models import (
    CheckCorruptionResponse,
    DetailedFixResponse,
    DiagnoseResponse,
    ErrorResponse,
    FixEncodingResponse,
    FixTextRequest,
    FixTextResponse,
    HealthResponse,
    SimulationExample,
    SimulationResponse,
)
from .normalize import is_corrupted
from . import service

app = FastAPI(
    title="encoding-repair",
    description="Detection and repair of mis-encoded Portuguese text in the timesheet store",
    version="0.1.0",
)

SIMULATED_CORRUPTIONS = [
    ("João", "Jo??o", "Question mark corruption"),
    ("Gonçalves", "Gon??alves", "Cedilla corruption"),
    ("configuração", "configura????o", "Multiple character corruption"),
    ("António", "Ant??nio", "O-acute corruption"),
    ("Descrição", "DescriÃ§Ã£o", "Double-encoded UTF-8"),
    ("“Gestão”", "â€œGestÃ£oâ€\x9d", "Smart quote mis-decoding"),
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.exception_handler(StoreUnavailableError)
async def store_unavailable(request: Request, exc: StoreUnavailableError):
    body = ErrorResponse(message="Store unavailable", error=str(exc))
    return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.get("/api/test/check-corruption", response_model=CheckCorruptionResponse)
def check_corruption(
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    report = service.check_corruption(engine, settings.tables, sample_cap=settings.sample_cap)
    return CheckCorruptionResponse(report=report)


@app.post("/api/test/fix-encoding", response_model=FixEncodingResponse)
def fix_encoding(
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    result = service.fix_encoding(engine, settings.tables, change_cap=settings.change_cap)
    errors = [
        f"{f.table}: {f.error}" if f.id is None else f"{f.table} #{f.id}: {f.error}"
        for f in result.failures
    ]
    return FixEncodingResponse(
        message=f"{result.records_fixed} records fixed",
        records_fixed=result.records_fixed,
        errors=errors,
    )


@app.post("/api/test/fix-text", response_model=FixTextResponse)
def fix_text(body: FixTextRequest):
    return FixTextResponse(
        original=body.text,
        fixed=service.fix_one_field(body.text),
        corrupted=is_corrupted(body.text),
    )


@app.get("/api/diagnose/diagnose-corruption", response_model=DiagnoseResponse)
def diagnose_corruption(
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    report = service.diagnose_corruption(engine, settings.tables, limit=settings.diagnose_limit)
    return DiagnoseResponse(
        message="Corruption diagnosis completed",
        corrupted_samples=report.corrupted_samples,
        total_tables=len(report.corrupted_samples),
        failures=report.failures,
        timestamp=_now(),
    )


@app.post("/api/diagnose/fix-encoding-detailed", response_model=DetailedFixResponse)
def fix_encoding_detailed(
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    result = service.fix_encoding(engine, settings.tables, change_cap=settings.change_cap)
    return DetailedFixResponse(
        message="Detailed encoding fix completed",
        total_records_fixed=result.records_fixed,
        changes=result.changes,
        total_changes=result.total_changes,
        failures=result.failures,
        timestamp=_now(),
    )


@app.get("/api/frontend-test/corruption-simulation", response_model=SimulationResponse)
def corruption_simulation():
    examples = [
        SimulationExample(
            original=original,
            corrupted=corrupted,
            repaired=service.fix_one_field(corrupted),
            description=description,
        )
        for original, corrupted, description in SIMULATED_CORRUPTIONS
    ]
    return SimulationResponse(
        message="Corruption simulation test", examples=examples, timestamp=_now()
    )
