import uuid
from dataclasses import dataclass, field
from typing import Any


def new_request_id(prefix: str | None = None) -> str:
    seed = prefix or "req"
    return f"{seed}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Per-request metadata handed down the call chain explicitly.

    Routers build one context per request and services receive it as an
    argument. Nothing stores it globally.
    """

    request_id: str = field(default_factory=new_request_id)
    ip: str | None = None
    user_agent: str | None = None

    def log_extra(self, **fields: Any) -> dict[str, Any]:
        """Return ``extra`` for a logging call tagged with this request."""

        return {"request_id": self.request_id, **fields}


def background_context(prefix: str = "job") -> RequestContext:
    """Context for work that does not originate from an HTTP request."""

    return RequestContext(request_id=new_request_id(prefix))
