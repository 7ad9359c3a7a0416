# pylint: disable=broad-exception-caught
import asyncio
import json
import logging
from typing import Awaitable, Callable, List

import prometheus_client
from fastapi import APIRouter, Response

from ..dependencies import ComponentsDep

HealthCheck = Callable[[], Awaitable[bool]]

logger = logging.getLogger("upload_api")

router = APIRouter(tags=["health"])


class EndpointFilter(logging.Filter):
    def __init__(self, paths_excluded_for_logging: List[str]):
        super().__init__()
        self.paths_excluded_for_logging = paths_excluded_for_logging

    def filter(self, record: logging.LogRecord) -> bool:
        return not any(
            path in record.getMessage() for path in self.paths_excluded_for_logging
        )


PATHS_EXCLUDED_FOR_LOGGING = ["/healthz/readiness", "/healthz/liveness", "/metrics"]


@router.get("/metrics")
async def get_metrics() -> Response:
    return Response(
        content=prometheus_client.generate_latest(),
        media_type=prometheus_client.CONTENT_TYPE_LATEST,
    )


@router.get("/healthz/liveness")
async def get_healthz_liveness() -> Response:
    return await get_healthz_response({})


@router.get("/healthz/readiness")
async def get_healthz_readiness(components: ComponentsDep) -> Response:
    async def storage_alive() -> bool:
        return await asyncio.to_thread(components.storage.is_alive)

    return await get_healthz_response(
        {"session_store": components.store.is_alive, "object_storage": storage_alive}
    )


async def get_healthz_response(checks: dict[str, HealthCheck]) -> Response:
    try:
        results = {check_name: await check_fn() for check_name, check_fn in checks.items()}

        status = "error"
        status_code = 503
        if all(results.values()):
            status = "ok"
            status_code = 200

        data = {"status": status, "checks": results}
        return Response(
            content=json.dumps(data), status_code=status_code, media_type="application/json"
        )

    except Exception as e:
        logger.exception("Health check failed.")
        data = {"status": "error", "message": str(e)}
        return Response(
            content=json.dumps(data), status_code=503, media_type="application/json"
        )
