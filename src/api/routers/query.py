"""POST /rolling-average -- run a rolling-average query and return its rows."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from src.core.config import get_settings
from src.core.logging import get_logger
from src.core.utils import timer
from src.db.request_log import SqlRequestLogger
from src.db.sql_source import SqlResultSource
from src.governance.datasource_catalog import CatalogError, DataSourceCatalog, load_catalog
from src.governance.validator import validate_query
from src.rolling.context import ExecutionContext
from src.rolling.granularity import UnsupportedGranularityError
from src.rolling.request_logging import NoopRequestLogger, RequestLogger
from src.rolling.runner import RollingAverageRunner
from src.rolling.sources import BaseResultSource
from src.rolling.spec import QuerySpec

logger = get_logger(__name__)
router = APIRouter()



class RowItem(BaseModel):
    timestamp: str
    event: dict[str, Any]


class RollingAverageResponse(BaseModel):
    query_id: str
    rows: list[RowItem]
    row_count: int
    stats: dict[str, int]
    latency_ms: int


# ── Dependencies (overridden in tests) ───────────────────

def get_catalog() -> DataSourceCatalog:
    return load_catalog()


def get_source(catalog: DataSourceCatalog = Depends(get_catalog)) -> BaseResultSource:
    return SqlResultSource(catalog)


def get_request_logger() -> RequestLogger:
    if not get_settings().request_log_enabled:
        return NoopRequestLogger()
    return SqlRequestLogger()


@router.post("", response_model=RollingAverageResponse)
def rolling_average_endpoint(
    body: dict[str, Any] = Body(..., description="rollingAverage query JSON"),
    catalog: DataSourceCatalog = Depends(get_catalog),
    source: BaseResultSource = Depends(get_source),
    request_logger: RequestLogger = Depends(get_request_logger),
):
    """Parse -> validate against the catalog -> run -> rows."""
    try:
        query = QuerySpec.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=[e["msg"] for e in exc.errors()])

    errors = validate_query(query, catalog)
    if errors:
        raise HTTPException(status_code=400, detail=errors)

    try:
        ctx = ExecutionContext.from_query_context(query.context)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=[str(exc)])
    runner = RollingAverageRunner(source, request_logger=request_logger)
    with timer() as t:
        try:
            rows = runner.execute(query, ctx)
        except (CatalogError, UnsupportedGranularityError) as exc:
            raise HTTPException(status_code=400, detail=[str(exc)])
        except Exception as exc:
            logger.exception("rollingAverage query %s failed", ctx.query_id)
            raise HTTPException(status_code=500, detail=str(exc))

    return RollingAverageResponse(
        query_id=ctx.query_id,
        rows=[RowItem(**row.to_dict()) for row in rows],
        row_count=len(rows),
        stats=ctx.stats(),
        latency_ms=t["elapsed_ms"],
    )
