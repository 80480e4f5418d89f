"""
Operations module factory.
"""

from __future__ import annotations

from functools import lru_cache

from app.operations.services.metrics import ReliabilityMetricsService
from app.operations.services.queries import OperationsQueryService
from app.reliability.factory import get_failure_record_repository, get_incident_repository


@lru_cache()
def get_query_service() -> OperationsQueryService:
    return OperationsQueryService(get_incident_repository(), get_failure_record_repository())


@lru_cache()
def get_metrics_service() -> ReliabilityMetricsService:
    return ReliabilityMetricsService()
