import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from queueflow.core.logger import get_logger

logger = get_logger("http")

class LogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        # Rejected commands (stale versions, illegal transitions) show up as warnings
        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {process_time * 1000:.1f}ms"
        )
        return response
