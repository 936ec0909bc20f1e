from starlette.middleware.base import BaseHTTPMiddleware

from .observability import RequestContext, new_request_id

REQUEST_ID_HEADER = "x-request-id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        client_host = request.client.host if request.client else None
        ip = request.headers.get("x-forwarded-for", client_host)
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        request.state.context = RequestContext(
            request_id=request_id,
            ip=ip,
            user_agent=request.headers.get("user-agent"),
        )
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
