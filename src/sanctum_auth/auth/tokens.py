"""Personal access token management (create, list, revoke, update)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from sanctum_auth.client.pipeline import Pipeline
from sanctum_auth.client.transport import response_json
from sanctum_auth.exceptions import ErrorKind, SanctumError
from sanctum_auth.logger import SanctumLogger
from sanctum_auth.models import SanctumConfig, Token, TokenResponse, TokenStats

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_PASS_THROUGH = (ErrorKind.AUTHENTICATION, ErrorKind.AUTHORIZATION, ErrorKind.RATE_LIMIT)


class TokenManager:
    """Manages the current user's personal access tokens.

    Authentication, authorization and rate-limit errors propagate as-is;
    every other failure is reported as a ``TOKEN`` error naming the
    operation.

    Args:
        pipeline: Request pipeline (tokens are sent by its token stage).
        config: Supplies the token endpoints.
        logger: Diagnostics sink.
    """

    def __init__(self, pipeline: Pipeline, config: SanctumConfig, logger: SanctumLogger) -> None:
        self._pipeline = pipeline
        self._endpoints = config.endpoints
        self._logger = logger

    async def create_token(
        self,
        name: str,
        abilities: Iterable[str] = ("*",),
        expires_at: Optional[datetime] = None,
    ) -> TokenResponse:
        """Create a token called *name* with *abilities*.

        The plain-text token is only ever returned here; the backend does
        not expose it again.
        """
        abilities = list(abilities)
        payload: dict[str, Any] = {"name": name, "abilities": abilities}
        if expires_at is not None:
            payload["expires_at"] = expires_at.isoformat()

        async def call() -> TokenResponse:
            response = await self._pipeline.post(self._endpoints.create_token, json=payload)
            return _parse(TokenResponse, response_json(response), "create token")

        result = await self._run("create", call)
        self._logger.log_token_operation("created", token_name=name, abilities=abilities)
        return result

    async def list_tokens(self) -> list[Token]:
        async def call() -> list[Token]:
            response = await self._pipeline.get(self._endpoints.list_tokens)
            body = response_json(response)
            items = body.get("tokens", body.get("data")) if isinstance(body, dict) else body
            if not isinstance(items, list):
                raise SanctumError.token("Unexpected token list response")
            return [_parse(Token, item, "list tokens") for item in items]

        return await self._run("list", call)

    async def get_token(self, token_id: int) -> Token:
        async def call() -> Token:
            response = await self._pipeline.get(f"{self._endpoints.list_tokens}/{token_id}")
            return _parse(Token, response_json(response), "get token")

        return await self._run("get", call)

    async def revoke_token(self, token_id: int) -> None:
        async def call() -> None:
            await self._pipeline.delete(f"{self._endpoints.revoke_tokens}/{token_id}")

        await self._run("revoke", call)
        self._logger.log_token_operation("revoked", token_id=token_id)

    async def revoke_tokens(self, token_ids: Iterable[int]) -> None:
        ids = list(token_ids)

        async def call() -> None:
            await self._pipeline.post(self._endpoints.revoke_tokens, json={"token_ids": ids})

        await self._run("revoke many", call)
        self._logger.log_token_operation(f"revoked {len(ids)}")

    async def revoke_all_tokens(self) -> None:
        async def call() -> None:
            await self._pipeline.post(self._endpoints.revoke_tokens)

        await self._run("revoke all", call)
        self._logger.log_token_operation("revoked all")

    async def update_token_abilities(self, token_id: int, abilities: Iterable[str]) -> Token:
        abilities = list(abilities)

        async def call() -> Token:
            response = await self._pipeline.put(
                f"{self._endpoints.list_tokens}/{token_id}", json={"abilities": abilities}
            )
            return _parse(Token, response_json(response), "update token")

        result = await self._run("update abilities", call)
        self._logger.log_token_operation("abilities updated", token_id=token_id, abilities=abilities)
        return result

    async def token_has_ability(self, token_id: int, ability: str) -> bool:
        token = await self.get_token(token_id)
        return token.can(ability)

    async def token_stats(self) -> TokenStats:
        tokens = await self.list_tokens()
        stats = TokenStats(total_count=len(tokens))
        for token in tokens:
            if token.is_expired:
                stats.expired_count += 1
            else:
                stats.active_count += 1
                if token.will_expire_soon:
                    stats.expiring_soon_count += 1
            for ability in token.abilities:
                stats.ability_counts[ability] = stats.ability_counts.get(ability, 0) + 1
        return stats

    async def _run(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except SanctumError as exc:
            self._logger.log_token_operation(f"{operation} failed")
            if exc.kind in _PASS_THROUGH or exc.kind is ErrorKind.TOKEN:
                raise
            raise SanctumError.token(
                f"Failed to {operation} token: {exc.message}",
                status_code=exc.status_code,
                details={"cause": exc.to_dict()},
            ) from exc


def _parse(model: type[M], data: Any, operation: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise SanctumError.token(f"Unexpected response to {operation}: {exc}") from exc
