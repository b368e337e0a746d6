"""Health endpoints.

Routes
------
GET /health/circuits   State and counters of every registered circuit breaker
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from openflow.resilience.circuit_breaker import all_circuit_breakers

router = APIRouter()


@router.get("/circuits", response_model=dict[str, Any])
def circuits_endpoint() -> dict[str, Any]:
    return {breaker.name: breaker.metrics() for breaker in all_circuit_breakers()}
