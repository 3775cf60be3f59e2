import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from metricbridge.packages.federation.errors import ErrorKind, FederationError, ValidationError


class ErrorMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        self.logger = logging.getLogger(__name__)

    async def dispatch(self, request, call_next):
        try:
            response = await call_next(request)
        except ValidationError as e:
            self.logger.warning("Rejected request %s %s: %s", request.method, request.url.path, e.message)
            response = JSONResponse(content=e.to_payload(), status_code=e.status_code)
        except FederationError as e:
            self.logger.error("Federation error (%s)", e.kind.value, exc_info=True)
            response = JSONResponse(content=e.to_payload(), status_code=e.status_code)
        except Exception as e:
            self.logger.error("Unknown error", exc_info=True)
            response = JSONResponse(
                content={"error": ErrorKind.INTERNAL.value, "message": str(e)},
                status_code=500,
            )

        return response
