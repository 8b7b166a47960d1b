from __future__ import annotations

import logging
from typing import Any, Protocol

import requests
from pydantic import BaseModel, ValidationError, field_validator

from market_sync.errors import ConnectivityError, DataShapeError, RemoteRejection

LOGGER = logging.getLogger(__name__)

SELECT_PATH = "/pgselect"
COMMAND_PATH = "/pgcommand"
_PREVIEW_CHARS = 500


class GatewayResponse(BaseModel):
    success: bool
    data: Any = None
    message: str = ""
    error: str | None = None

    @field_validator("message", mode="before")
    @classmethod
    def _null_message_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def rows(self) -> list[dict[str, Any]]:
        """Return ``data`` as a list of row objects; ``null`` means no rows."""
        if self.data is None:
            return []
        if not isinstance(self.data, list):
            raise DataShapeError(
                f"Expected a list of rows, got {type(self.data).__name__}"
            )
        for index, row in enumerate(self.data):
            if not isinstance(row, dict):
                raise DataShapeError(
                    f"Row {index} is {type(row).__name__}, expected an object"
                )
        return self.data


class CommandGateway(Protocol):
    def execute_select(self, query: str) -> GatewayResponse:
        ...

    def execute_command(self, query: str) -> GatewayResponse:
        ...


class HttpCommandGateway:
    """Runs SQL text on the remote store through its JSON command endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float,
        session: requests.Session | None = None,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")

        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._session = session or requests.Session()

    def execute_select(self, query: str) -> GatewayResponse:
        return self._post(SELECT_PATH, query)

    def execute_command(self, query: str) -> GatewayResponse:
        return self._post(COMMAND_PATH, query)

    def close(self) -> None:
        self._session.close()

    def _post(self, path: str, query: str) -> GatewayResponse:
        url = self._base_url + path
        LOGGER.debug(
            "gateway_request",
            extra={"url": url, "query_preview": _preview(query), "query_chars": len(query)},
        )

        try:
            response = self._session.post(url, json={"query": query}, timeout=self._timeout_s)
        except requests.RequestException as exc:
            raise ConnectivityError(f"Request to {url} failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            message = _message_from(payload) or _preview(response.text)
            raise RemoteRejection(
                f"{url} returned HTTP {response.status_code}: {message}",
                status_code=response.status_code,
            )

        if payload is None:
            raise DataShapeError(f"{url} returned a non-JSON body: {_preview(response.text)}")

        try:
            parsed = GatewayResponse.model_validate(payload)
        except ValidationError as exc:
            raise DataShapeError(f"{url} returned an unexpected envelope: {exc}") from exc

        if not parsed.success:
            raise RemoteRejection(
                parsed.error or parsed.message or "remote command failed",
                status_code=response.status_code,
            )
        return parsed


def create_gateway(*, base_url: str, timeout_s: float) -> HttpCommandGateway:
    session = requests.Session()
    session.headers.update({"Content-Type": "application/json"})
    return HttpCommandGateway(base_url=base_url, timeout_s=timeout_s, session=session)


def _message_from(payload: Any) -> str | None:
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if value:
                return str(value)
    return None


def _preview(text: str) -> str:
    if len(text) <= _PREVIEW_CHARS:
        return text
    return text[:_PREVIEW_CHARS] + "..."
