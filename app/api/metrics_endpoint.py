"""Prometheus scrape endpoint.

Returns every metric declared in app/core/metrics.py in the text
exposition format, for example:

  # TYPE exam_attempt_transitions_total counter
  exam_attempt_transitions_total{to_status="completed"} 42.0

Restrict access to it at the network edge in production.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
