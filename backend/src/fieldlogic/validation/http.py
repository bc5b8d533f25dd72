"""HTTP-backed async validators (`type: customHttp`).

An HttpValidator describes a request and how to read its response:

    registry.async_validators.register("checkUsername", HttpValidator(
        url=lambda ctx, params: f"/api/users/check?username={ctx.value()}",
        map_response=lambda data, ctx: None if data["available"] else "usernameTaken",
    ))

Requests go through the engine's `httpx.AsyncClient`. Transport failures,
non-2xx responses and unreadable bodies fail open: the field is treated as
valid unless `on_error` returns an error kind.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from fieldlogic.validation.context import ValidatorContext

logger = logging.getLogger(__name__)


@dataclass
class HttpValidator:
    """Request/response mapping for an HTTP validation call.

    Attributes:
        url: URL, or a function of (ctx, params) returning one
        method: HTTP method
        body: Function of (ctx, params) returning a JSON body; sent as query
            params for GET requests
        headers: Extra request headers
        map_response: Function of (parsed JSON, ctx) returning a validator result
        on_error: Function of (exception, ctx) returning a validator result
    """

    url: str | Callable[[ValidatorContext, dict[str, Any]], str]
    method: str = "GET"
    body: Callable[[ValidatorContext, dict[str, Any]], Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    map_response: Callable[[Any, ValidatorContext], Any] | None = None
    on_error: Callable[[Exception, ValidatorContext], Any] | None = None

    async def run(
        self, client: httpx.AsyncClient, ctx: ValidatorContext, params: dict[str, Any]
    ) -> Any:
        url = self.url(ctx, params) if callable(self.url) else self.url
        method = self.method.upper()
        payload = self.body(ctx, params) if self.body is not None else None

        request: dict[str, Any] = {"headers": self.headers}
        if payload is not None:
            request["params" if method == "GET" else "json"] = payload

        try:
            response = await client.request(method, url, **request)
            response.raise_for_status()
            data = response.json() if response.content else None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("HTTP validation for '%s' failed open: %s", ctx.field_path, e)
            return self.on_error(e, ctx) if self.on_error is not None else None

        if self.map_response is None:
            return None
        return self.map_response(data, ctx)
