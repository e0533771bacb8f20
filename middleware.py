from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from contextvars import ContextVar

import logging
import uuid

# Request id of the request currently being served, "N/A" outside a request
request_id_context: ContextVar[str] = ContextVar("request_id", default="N/A")

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    @classmethod
    def request_id_context(cls):
        return request_id_context

    async def dispatch(self, request: Request, call_next):

        # Shortened for readability in logs
        new_request_id = str(uuid.uuid4())[:8]
        token = request_id_context.set(new_request_id)

        logger.debug("%s %s request started", request.method, request.url.path)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = new_request_id

        except Exception:
            logger.exception("Unhandled error during request processing.")
            raise

        finally:
            logger.debug("%s %s request finished", request.method, request.url.path)
            request_id_context.reset(token)

        return response
