"""HTTP + WebSocket client for the gateway dashboard API."""

import asyncio
import threading
import time
from collections.abc import Callable, Iterator
from http import HTTPMethod
from typing import TypeVar
from urllib.parse import quote, urlencode

import httpx
from pydantic import TypeAdapter, ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import ClientConnection, connect

from clawboard.cli.models import (
    ArchivePage,
    HistoricalSessionInfo,
    HistoryList,
    QueueSnapshot,
    ToolPage,
    TranscriptList,
    TranscriptMessage,
    WsMessage,
)
from clawboard.config import config
from clawboard.constants import (
    ARCHIVE_PAGE_MAX,
    ARCHIVE_PATH,
    HISTORY_PATH,
    QUEUE_PATH,
    RECENT_MESSAGES_LIMIT,
    SESSION_ABORT_PATH,
    SESSION_MESSAGES_PATH,
    SESSION_TOOLS_PATH,
    TOOLS_COMPACT_LIMIT,
)
from clawboard.logging_config import get_logger

logger = get_logger(__name__)

# Reconnection settings
WS_INITIAL_BACKOFF = 1.0  # Initial reconnect delay in seconds
WS_MAX_BACKOFF = 30.0  # Maximum reconnect delay
WS_BACKOFF_MULTIPLIER = 2.0  # Exponential backoff multiplier
API_CONNECT_RETRY_DELAYS_S = (0.1, 0.3, 0.6)
CONNECT_ERROR_LOG_INTERVAL_S = 10.0

__all__ = ["ClawboardAPIClient", "APIError", "PushHandler"]

PushHandler = Callable[[WsMessage], None]

T = TypeVar("T")

_WS_MESSAGE_ADAPTER = TypeAdapter(WsMessage)
_QUEUE_ADAPTER: TypeAdapter[QueueSnapshot] = TypeAdapter(QueueSnapshot)
_HISTORY_ADAPTER: TypeAdapter[tuple[HistoricalSessionInfo, ...]] = TypeAdapter(HistoryList)
_ARCHIVE_ADAPTER: TypeAdapter[ArchivePage] = TypeAdapter(ArchivePage)
_TOOLS_ADAPTER: TypeAdapter[ToolPage] = TypeAdapter(ToolPage)
_MESSAGES_ADAPTER: TypeAdapter[tuple[TranscriptMessage, ...]] = TypeAdapter(TranscriptList)


class APIError(Exception):
    """API request failed with structured error info."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or message  # Fallback to full message if no detail


def _session_path(template: str, session_id: str) -> str:
    return template.format(session_id=quote(session_id, safe=""))


class ClawboardAPIClient:
    """Async HTTP client for the dashboard API with a shared push connection.

    Push handlers are registered per topic with :meth:`subscribe` and run on the
    WebSocket reader thread; callers that touch UI or event-loop state must
    marshal onto their own loop.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        ws_url: str | None = None,
        token: str | None = None,
        timeout_s: float | None = None,
    ):
        """Initialize client.

        Args:
            base_url: REST base URL, e.g. ``http://localhost:3001/api``
            ws_url: Push endpoint; defaults to the configured one
            token: Bearer token sent on REST calls and as the ``token`` query param on the WebSocket
            timeout_s: Default request timeout
        """
        self.base_url = (base_url or config.api.base_url).rstrip("/")
        self.ws_url = ws_url or config.api.ws_url
        self.token = token if token is not None else config.api.token
        self.timeout_s = timeout_s if timeout_s is not None else config.api.timeout_s
        self._client: httpx.AsyncClient | None = None
        # WebSocket state
        self._ws: ClientConnection | None = None
        self._ws_thread: threading.Thread | None = None
        self._ws_running = False
        self._ws_lock = threading.Lock()
        self._handlers: dict[str, list[PushHandler]] = {}
        self._handlers_lock = threading.Lock()
        self._last_connect_error_log: float | None = None

    async def connect(self) -> None:
        """Open the HTTP connection pool."""
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout_s,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def close(self) -> None:
        """Close connection."""
        self.stop_websocket()
        if self._client:
            await self._client.aclose()
            self._client = None

    # --- WebSocket Push Support ---

    def subscribe(self, topic: str, handler: PushHandler) -> Callable[[], None]:
        """Register ``handler`` for messages of type ``topic``.

        All topics share one connection, started on first subscription.

        Returns:
            A callable that removes this registration. When the last handler is
            removed the connection is stopped.
        """
        with self._handlers_lock:
            self._handlers.setdefault(topic, []).append(handler)
        self.start_websocket()

        def unsubscribe() -> None:
            with self._handlers_lock:
                handlers = self._handlers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)
                if not handlers:
                    self._handlers.pop(topic, None)
                empty = not self._handlers
            if empty:
                self.stop_websocket()

        return unsubscribe

    @property
    def subscribed_topics(self) -> frozenset[str]:
        with self._handlers_lock:
            return frozenset(self._handlers)

    def start_websocket(self) -> None:
        """Start the push connection in a background thread.

        Runs in a background thread to avoid blocking the TUI event loop.
        """
        if self._ws_running:
            logger.debug("WebSocket already running")
            return

        self._ws_running = True
        self._ws_thread = threading.Thread(target=self._ws_loop, daemon=True, name="ws-client")
        self._ws_thread.start()
        logger.info("WebSocket client thread started")

    def stop_websocket(self) -> None:
        """Stop WebSocket connection."""
        if not self._ws_running and self._ws_thread is None:
            return
        self._ws_running = False
        with self._ws_lock:
            if self._ws:
                try:
                    self._ws.close()
                except (OSError, WebSocketException) as e:
                    logger.debug("WebSocket close failed: %s", e)
                self._ws = None
        thread = self._ws_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._ws_thread = None
        logger.info("WebSocket client stopped")

    @property
    def ws_connected(self) -> bool:
        """Check if WebSocket is connected."""
        with self._ws_lock:
            return self._ws is not None

    def _ws_uri(self) -> str:
        if not self.token:
            return self.ws_url
        separator = "&" if "?" in self.ws_url else "?"
        return f"{self.ws_url}{separator}{urlencode({'token': self.token})}"

    def _reconnect_delays(self) -> Iterator[float]:
        """Yield exponentially growing reconnect delays, capped at WS_MAX_BACKOFF."""
        delay = WS_INITIAL_BACKOFF
        while True:
            yield delay
            delay = min(delay * WS_BACKOFF_MULTIPLIER, WS_MAX_BACKOFF)

    def _ws_loop(self) -> None:
        """Keep one push connection open until :meth:`stop_websocket`, reconnecting with backoff."""
        delays = self._reconnect_delays()
        while self._ws_running:
            try:
                if self._ws_session():
                    delays = self._reconnect_delays()
            except Exception:
                logger.exception("WebSocket reader failed")
            finally:
                with self._ws_lock:
                    self._ws = None

            if not self._ws_running:
                break
            delay = next(delays)
            logger.debug("Reconnecting in %.1fs...", delay)
            time.sleep(delay)

    def _ws_session(self) -> bool:
        """Run one push connection until it drops.

        Returns:
            Whether the connection was established. A session that never
            connected keeps growing the reconnect delay.
        """
        logger.debug("Connecting to WebSocket at %s", self.ws_url)
        try:
            ws = connect(self._ws_uri(), open_timeout=self.timeout_s)
        except (OSError, WebSocketException) as e:
            logger.debug("WebSocket connection failed: %s", e)
            return False

        with self._ws_lock:
            self._ws = ws
        logger.info("WebSocket connected", topics=sorted(self.subscribed_topics))

        try:
            for message in ws:
                if not self._ws_running:
                    break
                self._handle_ws_message(message)
        except ConnectionClosed:
            logger.info("WebSocket connection closed")
        except (OSError, WebSocketException) as e:
            logger.warning("WebSocket dropped: %s", e)
        return True

    def _handle_ws_message(self, message: str | bytes) -> None:
        # Malformed JSON surfaces as a ValidationError too.
        try:
            ws_message = _WS_MESSAGE_ADAPTER.validate_json(message)
        except ValidationError as e:
            logger.warning("Invalid WebSocket message %r: %s", message[:100], e.errors()[0]["msg"])
            return
        self._dispatch(ws_message)

    def _dispatch(self, message: WsMessage) -> None:
        """Deliver ``message`` to every handler of its topic; one failing handler does not stop the rest."""
        with self._handlers_lock:
            handlers = list(self._handlers.get(message.type, ()))
        for handler in handlers:
            try:
                handler(message)
            except Exception:
                logger.exception("Push handler failed", topic=message.type)

    # --- API Methods ---

    async def _request(
        self,
        method: HTTPMethod | str,
        url: str,
        *,
        timeout: float | None = None,
        params: dict[str, str] | None = None,
        json_body: dict[str, str | None] | None = None,
    ) -> httpx.Response:
        """Send one request, retrying only when the gateway cannot be reached.

        Args:
            method: GET or POST
            url: URL path relative to the base URL
            timeout: Optional request timeout override
            params: Query parameters
            json_body: JSON request body (POST only)

        Returns:
            A 2xx response

        Raises:
            APIError: If the client is not connected, the gateway is unreachable,
                the call times out or the gateway answers with an error status
        """
        client = self._client
        if client is None:
            raise APIError("Client not connected. Call connect() first.")
        try:
            verb = HTTPMethod(method)
        except ValueError as e:
            raise APIError(f"Unsupported HTTP method: {method}") from e
        if verb not in (HTTPMethod.GET, HTTPMethod.POST):
            raise APIError(f"Unsupported HTTP method: {method}")

        request = client.build_request(
            verb.value,
            url,
            params=params,
            json=json_body if verb is HTTPMethod.POST else None,
            timeout=timeout if timeout is not None else self.timeout_s,
        )
        unreachable: httpx.ConnectError | None = None
        for delay in (0.0, *API_CONNECT_RETRY_DELAYS_S):
            if delay:
                await asyncio.sleep(delay)
            try:
                resp = await client.send(request)
            except httpx.ConnectError as e:
                unreachable = e
                self._note_connect_failure(request, e)
                continue
            except httpx.TimeoutException as e:
                raise APIError("API request timed out. Gateway may be blocked or overloaded.") from e
            except httpx.HTTPError as e:
                raise APIError(f"API request failed: {e}") from e
            return self._ensure_success(resp)

        raise APIError("Cannot connect to the gateway dashboard API.") from unreachable

    def _note_connect_failure(self, request: httpx.Request, error: httpx.ConnectError) -> None:
        """Log unreachable-gateway errors at most once per CONNECT_ERROR_LOG_INTERVAL_S."""
        now = self._now_monotonic()
        last = self._last_connect_error_log
        if last is not None and now - last < CONNECT_ERROR_LOG_INTERVAL_S:
            return
        self._last_connect_error_log = now
        logger.debug(
            "API connect failed",
            method=request.method,
            url=str(request.url),
            error=str(error),
        )

    @staticmethod
    def _ensure_success(resp: httpx.Response) -> httpx.Response:
        """Map a non-2xx response to APIError, preferring the body's ``error`` or ``detail`` text."""
        if resp.is_success:
            return resp
        detail = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("error") or body.get("detail")
        raise APIError(
            f"API request failed: {resp.status_code} {detail or resp.text}",
            status_code=resp.status_code,
            detail=detail,
        )

    def _now_monotonic(self) -> float:
        """Return a monotonic timestamp for debounce logic."""
        return time.monotonic()

    @staticmethod
    def _payload(resp: httpx.Response) -> dict[str, object]:  # guard: loose-dict - raw JSON envelope
        """Decode a ``{success, ...}`` envelope.

        Raises:
            APIError: If the body is not a JSON object or reports ``success: false``
        """
        try:
            body = resp.json()
        except ValueError as e:
            raise APIError("API returned an undecodable body", status_code=resp.status_code) from e
        if not isinstance(body, dict):
            raise APIError("API returned a non-object body", status_code=resp.status_code)
        if body.get("success") is False:
            error = body.get("error")
            detail = error if isinstance(error, str) else None
            raise APIError(f"API reported failure: {detail or 'unknown error'}", status_code=resp.status_code, detail=detail)
        return body

    @staticmethod
    def _validate(adapter: TypeAdapter[T], data: object) -> T:
        try:
            return adapter.validate_python(data)
        except ValidationError as e:
            raise APIError("API returned an unexpected payload", detail=str(e)) from e

    async def get_queue(self) -> QueueSnapshot:
        """Fetch a full queue snapshot.

        Raises:
            APIError: If request fails
        """
        resp = await self._request("GET", QUEUE_PATH)
        return self._validate(_QUEUE_ADAPTER, self._payload(resp))

    async def get_history(self) -> tuple[HistoricalSessionInfo, ...]:
        """Fetch recently completed sessions."""
        resp = await self._request("GET", HISTORY_PATH)
        return self._validate(_HISTORY_ADAPTER, self._payload(resp).get("sessions"))

    async def list_archive(self, limit: int, offset: int = 0) -> ArchivePage:
        """List archived session transcripts, newest first.

        Args:
            limit: Page size (the server caps it at 100)
            offset: Number of entries to skip

        Raises:
            APIError: If request fails
        """
        params = {"limit": str(max(1, min(limit, ARCHIVE_PAGE_MAX))), "offset": str(max(0, offset))}
        resp = await self._request("GET", ARCHIVE_PATH, params=params)
        return self._validate(_ARCHIVE_ADAPTER, self._payload(resp))

    async def list_session_tools(
        self,
        session_id: str,
        limit: int = TOOLS_COMPACT_LIMIT,
        *,
        all_tools: bool = False,
    ) -> ToolPage:
        """Fetch tool calls from a session transcript; ``all_tools`` ignores ``limit``."""
        params = {"all": "true"} if all_tools else {"limit": str(limit)}
        resp = await self._request("GET", _session_path(SESSION_TOOLS_PATH, session_id), params=params)
        return self._validate(_TOOLS_ADAPTER, self._payload(resp))

    async def list_session_messages(
        self,
        session_id: str,
        limit: int = RECENT_MESSAGES_LIMIT,
    ) -> list[TranscriptMessage]:
        """Fetch the most recent user/assistant messages of a session."""
        resp = await self._request(
            "GET",
            _session_path(SESSION_MESSAGES_PATH, session_id),
            params={"limit": str(limit)},
        )
        return list(self._validate(_MESSAGES_ADAPTER, self._payload(resp).get("messages")))

    async def abort_session(self, session_id: str) -> None:
        """Abort the running turn of a session.

        Raises:
            APIError: If the gateway refuses (e.g. 404 session not found, 503 not connected)
        """
        resp = await self._request("POST", _session_path(SESSION_ABORT_PATH, session_id))
        self._payload(resp)
        logger.info("Aborted session %s", session_id)
