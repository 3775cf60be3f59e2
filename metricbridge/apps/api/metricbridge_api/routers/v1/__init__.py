from typing import List

from fastapi import APIRouter

from .metrics import router as metrics_router
from .query import router as query_router

v1_routes: List[APIRouter] = [
    query_router,
    metrics_router,
]

__all__ = [
    "metrics_router",
    "query_router",
    "v1_routes",
]
