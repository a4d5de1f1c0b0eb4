"""HTTP client for the creation helper backend."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Optional, Sequence

import httpx

from .config import Settings
from .schemas.session import (
    CreationGoal,
    CreationMode,
    DraftCharacter,
    ImageAttachment,
    Session,
    UploadedImage,
)

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Wrap transport or API failures when communicating with the backend."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


class CreationBackendClient:
    """Client for the session lifecycle calls and the event stream."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @property
    def _base_url(self) -> str:
        """Return the backend base URL without a trailing slash."""

        return str(self._settings.backend_url).rstrip("/")

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                timeout = httpx.Timeout(
                    self._settings.request_timeout,
                    connect=self._settings.connect_timeout,
                )
                limits = httpx.Limits(
                    max_connections=10,
                    max_keepalive_connections=5,
                )
                self._client = httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=timeout,
                    limits=limits,
                    http2=self._transport is None,
                    transport=self._transport,
                    headers={"Accept": "application/json"},
                )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        allow_missing: bool = False,
    ) -> Any:
        client = await self._get_http_client()
        try:
            response = await client.request(method, path, json=json_body)
        except httpx.TimeoutException as exc:
            raise BackendError(
                httpx.codes.GATEWAY_TIMEOUT, f"Request timed out: {exc}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendError(httpx.codes.BAD_GATEWAY, str(exc)) from exc

        if allow_missing and response.status_code == httpx.codes.NOT_FOUND:
            return None
        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise BackendError(response.status_code, detail)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(httpx.codes.BAD_GATEWAY, str(exc)) from exc

    @staticmethod
    def _sessions_path(session_id: str | None = None, *parts: str) -> str:
        segments = ["creation-helper", "sessions"]
        if session_id is not None:
            segments.append(session_id)
        segments.extend(parts)
        return "/" + "/".join(segments)

    async def start(
        self,
        goal: CreationGoal = "character",
        *,
        mode: CreationMode | None = None,
        target_type: CreationGoal | None = None,
        target_id: str | None = None,
    ) -> Session:
        """Create a new session on the backend."""

        body: dict[str, Any] = {"creationGoal": goal}
        if mode is not None:
            body["creationMode"] = mode
        if target_type is not None:
            body["targetType"] = target_type
        if target_id is not None:
            body["targetId"] = target_id
        payload = await self._request("POST", self._sessions_path(), json_body=body)
        return Session.model_validate(payload)

    async def get_session(self, session_id: str) -> Session | None:
        payload = await self._request(
            "GET", self._sessions_path(session_id), allow_missing=True
        )
        if payload is None:
            return None
        return Session.model_validate(payload)

    async def send_message(
        self,
        session_id: str,
        message: str,
        uploaded_images: Sequence[ImageAttachment] | None = None,
        *,
        request_id: str | None = None,
    ) -> Session:
        """Run one user turn; resolves with the canonical session."""

        body: dict[str, Any] = {
            "message": message,
            "uploadedImages": (
                [image.to_upload() for image in uploaded_images]
                if uploaded_images
                else None
            ),
        }
        if request_id is not None:
            body["requestId"] = request_id
        payload = await self._request(
            "POST", self._sessions_path(session_id, "messages"), json_body=body
        )
        return Session.model_validate(payload)

    async def regenerate(
        self, session_id: str, *, request_id: str | None = None
    ) -> Session:
        body: dict[str, Any] = {}
        if request_id is not None:
            body["requestId"] = request_id
        payload = await self._request(
            "POST", self._sessions_path(session_id, "regenerate"), json_body=body
        )
        return Session.model_validate(payload)

    async def complete(self, session_id: str) -> DraftCharacter:
        payload = await self._request(
            "POST", self._sessions_path(session_id, "complete")
        )
        return DraftCharacter.model_validate(payload)

    async def cancel(self, session_id: str) -> None:
        """Ask the backend to abort any running request and abandon the session."""

        await self._request("POST", self._sessions_path(session_id, "cancel"))

    async def get_uploaded_image(
        self, session_id: str, image_id: str
    ) -> UploadedImage | None:
        payload = await self._request(
            "GET",
            self._sessions_path(session_id, "images", image_id),
            allow_missing=True,
        )
        if payload is None:
            return None
        return UploadedImage.model_validate(payload)

    async def stream_events(self) -> AsyncGenerator[ServerSentEvent, None]:
        """Yield backend push events; ``event`` carries the topic name."""

        client = await self._get_http_client()
        try:
            async with client.stream(
                "GET",
                "/events",
                headers={"Accept": "text/event-stream"},
                timeout=httpx.Timeout(None, connect=self._settings.connect_timeout),
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise BackendError(response.status_code, detail)

                async for event in self._iter_events(response):
                    yield event
        except httpx.HTTPError as exc:
            raise BackendError(httpx.codes.BAD_GATEWAY, str(exc)) from exc

    async def aclose(self) -> None:
        async with self._client_lock:
            client = self._client
            self._client = None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as exc:  # pragma: no cover - best effort cleanup
            logger.warning("Error closing backend HTTP client: %s", exc)

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        data = "\n".join(data_lines)
        return ServerSentEvent(
            data=data, event=event_name or "message", event_id=event_id
        )

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Backend returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload.get("detail") or payload
        return payload


__all__ = ["BackendError", "CreationBackendClient", "ServerSentEvent"]
