from typing import Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response

from metricbridge.apps.api.metricbridge_api.ioc import Container
from metricbridge.packages.federation.encoding import CSV_MEDIA_TYPE, table_to_csv
from metricbridge.packages.federation.service import FederatedQueryService

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/{metric_name}")
@inject
def metric_data(
    metric_name: str,
    filter: Optional[str] = Query(None, description="Single comparison, e.g. ticker=AAPL"),
    service: FederatedQueryService = Depends(Provide[Container.query_service]),
) -> Response:
    with service.metric_data(metric_name, filter) as table:
        if table.row_count == 0:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return Response(content=table_to_csv(table), media_type=CSV_MEDIA_TYPE)
