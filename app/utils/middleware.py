import logging
import time
import uuid

from fastapi import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _route_path(request: Request) -> str:
    # Templated path (/api/messages/{conversation_id}) keeps ids out of the log key
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


async def logging_middleware(request: Request, call_next):
    """Log each API call with its route, caller and latency, tagged by request id."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"[{request_id}] {request.method} {request.url.path} failed")
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    user_id = getattr(request.state, "user_id", None)
    logger.info(
        f"[{request_id}] {request.method} {_route_path(request)} -> {response.status_code} "
        f"user={user_id if user_id is not None else '-'} {elapsed_ms:.1f}ms"
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response
