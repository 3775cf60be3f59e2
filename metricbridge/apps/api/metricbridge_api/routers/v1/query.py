from enum import Enum
from typing import Iterator

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from metricbridge.apps.api.metricbridge_api.ioc import Container
from metricbridge.packages.federation.encoding import (
    ARROW_STREAM_MEDIA_TYPE,
    arrow_stream_bytes,
    encode_arrow_stream,
    iter_json_rows,
    table_to_json,
)
from metricbridge.packages.federation.executor import CacheLease
from metricbridge.packages.federation.models import FederatedExplainPlan
from metricbridge.packages.federation.service import FederatedQueryService

router = APIRouter(prefix="/query", tags=["query"])


class ResultFormat(str, Enum):
    ARROW = "arrow"
    JSON = "json"


class QueryRequest(BaseModel):
    sql: str
    format: ResultFormat = ResultFormat.ARROW


@router.get("")
@inject
def query(
    sql: str = Query(..., description="SELECT statement over a logical table"),
    format: ResultFormat = Query(ResultFormat.ARROW),
    service: FederatedQueryService = Depends(Provide[Container.query_service]),
    batch_size: int = Depends(Provide[Container.config.result.batch_size]),
) -> Response:
    return _query_response(service, sql, format, batch_size)


@router.post("")
@inject
def query_post(
    request: QueryRequest,
    service: FederatedQueryService = Depends(Provide[Container.query_service]),
    batch_size: int = Depends(Provide[Container.config.result.batch_size]),
) -> Response:
    return _query_response(service, request.sql, request.format, batch_size)


@router.get("/explain", response_model=FederatedExplainPlan)
@inject
def explain(
    sql: str = Query(...),
    service: FederatedQueryService = Depends(Provide[Container.query_service]),
) -> FederatedExplainPlan:
    return service.explain(sql)


def _query_response(
    service: FederatedQueryService,
    sql: str,
    format: ResultFormat,
    batch_size: int,
) -> Response:
    lease = service.lease_query(sql)
    table = lease.table
    if table.row_count > batch_size:
        if format == ResultFormat.JSON:
            chunks, media_type = iter_json_rows(table, batch_size), "application/json"
        else:
            chunks, media_type = encode_arrow_stream(table, batch_size), ARROW_STREAM_MEDIA_TYPE
        # closed by whichever finishes first: the stream or the response
        return StreamingResponse(
            _closing(lease, chunks),
            media_type=media_type,
            background=BackgroundTask(lease.close),
        )

    with lease:
        if format == ResultFormat.JSON:
            return JSONResponse(content=table_to_json(table))
        return Response(content=arrow_stream_bytes(table), media_type=ARROW_STREAM_MEDIA_TYPE)


def _closing(lease: CacheLease, chunks: Iterator[bytes]) -> Iterator[bytes]:
    # the cached result stays pinned until the last chunk is sent
    try:
        yield from chunks
    finally:
        lease.close()
