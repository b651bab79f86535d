"""
Runtime configuration.

Values come from the environment (a local ``.env`` is loaded first):

- DATABASE_URL                    store to scan, default ``sqlite:///timetracker.db``
- ENCODING_REPAIR_TABLES          JSON list of table specs replacing DEFAULT_TABLES
- ENCODING_REPAIR_SAMPLE_CAP      samples kept in a corruption report
- ENCODING_REPAIR_CHANGE_CAP      field changes kept in a fix result
- ENCODING_REPAIR_DIAGNOSE_LIMIT  rows read per table when diagnosing
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Tuple

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, TypeAdapter

from .models import TableSpec
from .rules import DEFAULT_CHANGE_CAP, DEFAULT_DIAGNOSE_LIMIT, DEFAULT_SAMPLE_CAP

DEFAULT_DATABASE_URL = "sqlite:///timetracker.db"

DEFAULT_TABLES: Tuple[TableSpec, ...] = (
    TableSpec(name="users", columns=["first_name", "last_name", "email", "role"]),
    TableSpec(name="clients", columns=["name", "description"]),
    TableSpec(name="projects", columns=["name", "description"]),
    TableSpec(name="time_entries", columns=["description", "notes"]),
    TableSpec(name="groups", columns=["name", "description"]),
    TableSpec(name="categories", columns=["name", "description"]),
)

_tables_adapter = TypeAdapter(List[TableSpec])


class Settings(BaseModel):
    database_url: str = DEFAULT_DATABASE_URL
    tables: List[TableSpec] = Field(default_factory=lambda: list(DEFAULT_TABLES))
    sample_cap: int = Field(default=DEFAULT_SAMPLE_CAP, ge=0)
    change_cap: int = Field(default=DEFAULT_CHANGE_CAP, ge=0)
    diagnose_limit: int = Field(default=DEFAULT_DIAGNOSE_LIMIT, ge=1)


def load_settings() -> Settings:
    load_dotenv(find_dotenv(usecwd=True))

    values = {"database_url": os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)}

    raw_tables = os.getenv("ENCODING_REPAIR_TABLES")
    if raw_tables:
        values["tables"] = _tables_adapter.validate_json(raw_tables)

    for key, env in (
        ("sample_cap", "ENCODING_REPAIR_SAMPLE_CAP"),
        ("change_cap", "ENCODING_REPAIR_CHANGE_CAP"),
        ("diagnose_limit", "ENCODING_REPAIR_DIAGNOSE_LIMIT"),
    ):
        raw = os.getenv(env)
        if raw:
            values[key] = raw

    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
