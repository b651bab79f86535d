from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TableSpec(CamelModel):
    """A table to scan: its identifier column and the text columns to check."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    id_column: str = "id"
    columns: List[str] = Field(default_factory=list)


class SoftFailure(CamelModel):
    table: str
    id: Optional[Any] = None
    error: str


class TableStatus(CamelModel):
    table: str
    status: Literal["checked", "not_found", "error"]
    rows: int = 0
    # non-null candidate fields read
    examined: int = 0
    corrupted: int = 0
    fixed: int = 0


class CorruptionSample(CamelModel):
    table: str
    column: str
    id: Optional[Any] = None
    original: str
    fixed: str


class CorruptionReport(CamelModel):
    total_corrupted: int = 0
    tables: List[TableStatus] = Field(default_factory=list)
    samples_found: List[CorruptionSample] = Field(default_factory=list)
    failures: List[SoftFailure] = Field(default_factory=list)


class FieldChange(CamelModel):
    table: str
    id: Optional[Any] = None
    field: str
    before: str
    after: str


class FixResult(CamelModel):
    records_fixed: int = 0
    changes: List[FieldChange] = Field(default_factory=list)
    total_changes: int = 0
    tables: List[TableStatus] = Field(default_factory=list)
    failures: List[SoftFailure] = Field(default_factory=list)


class DiagnosisSample(CamelModel):
    id: Optional[Any] = None
    field: str
    value: str
    char_codes: List[Dict[str, Any]] = Field(default_factory=list)
    signatures: List[str] = Field(default_factory=list)


class DiagnosisReport(CamelModel):
    corrupted_samples: Dict[str, List[DiagnosisSample]] = Field(default_factory=dict)
    tables: List[TableStatus] = Field(default_factory=list)
    failures: List[SoftFailure] = Field(default_factory=list)


# --- HTTP envelopes ---

class CheckCorruptionResponse(CamelModel):
    success: bool = True
    report: CorruptionReport


class FixEncodingResponse(CamelModel):
    success: bool = True
    message: str
    records_fixed: int = 0
    errors: List[str] = Field(default_factory=list)


class DetailedFixResponse(CamelModel):
    success: bool = True
    message: str
    total_records_fixed: int = 0
    changes: List[FieldChange] = Field(default_factory=list)
    total_changes: int = 0
    failures: List[SoftFailure] = Field(default_factory=list)
    timestamp: str


class DiagnoseResponse(CamelModel):
    success: bool = True
    message: str
    corrupted_samples: Dict[str, List[DiagnosisSample]] = Field(default_factory=dict)
    total_tables: int = 0
    failures: List[SoftFailure] = Field(default_factory=list)
    timestamp: str


class FixTextRequest(CamelModel):
    text: str = Field(examples=["Jo??o Gon??alves"])


class FixTextResponse(CamelModel):
    original: str
    fixed: str
    corrupted: bool


class SimulationExample(CamelModel):
    original: str
    corrupted: str
    repaired: str
    description: str


class SimulationResponse(CamelModel):
    message: str
    examples: List[SimulationExample] = Field(default_factory=list)
    timestamp: str


class ErrorResponse(CamelModel):
    success: bool = False
    message: str
    error: Optional[str] = None


class HealthResponse(BaseModel):
    ok: bool = True
