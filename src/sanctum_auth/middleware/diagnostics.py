"""Diagnostics stage: masked request/response traces."""

from __future__ import annotations

import httpx

from sanctum_auth.client.pipeline import Dispatch, ErrorOutcome, Middleware, RequestContext
from sanctum_auth.client.transport import RequestFailure, response_json
from sanctum_auth.logger import SanctumLogger


class DiagnosticsMiddleware(Middleware):
    """Innermost stage.  Logs what actually goes over the wire, secrets masked."""

    name = "diagnostics"

    def __init__(self, logger: SanctumLogger) -> None:
        self._logger = logger

    async def on_request(self, ctx: RequestContext) -> None:
        self._logger.log_request(ctx.method, ctx.path, dict(ctx.headers), ctx.json)

    async def on_response(self, ctx: RequestContext, response: httpx.Response) -> None:
        self._logger.log_response(
            response.status_code,
            str(response.request.url),
            dict(response.headers),
            response_json(response),
            duration_ms=ctx.elapsed_ms,
        )

    async def on_error(
        self, ctx: RequestContext, failure: RequestFailure, dispatch: Dispatch
    ) -> ErrorOutcome:
        self._logger.log_failure(ctx.method, ctx.path, failure.message, failure.status_code)
        if failure.response is not None:
            self._logger.log_response(
                failure.response.status_code,
                ctx.path,
                dict(failure.response.headers),
                response_json(failure.response),
                duration_ms=ctx.elapsed_ms,
            )
        return failure
