import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "x-correlation-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Marca cada requisição com um correlation id e registra a duração"""

    async def dispatch(self, request, call_next):
        cid = request.headers.get(CORRELATION_HEADER) or f"cx-{uuid.uuid4()}"
        request.state.correlation_id = cid

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[CORRELATION_HEADER] = cid
        logger.info(
            f"[{cid}] {request.method} {request.url.path} → {response.status_code} ({elapsed_ms:.1f}ms)"
        )
        return response
