from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from ridetrack.ActorIdentity import ActorIdentity
from ridetrack.config import (CONNECT_TIMEOUT_S, MAX_RECONNECT_ATTEMPTS, PLATFORM,
                              RECONNECT_DELAY_MAX_S, RECONNECT_DELAY_S, Config)
from ridetrack.errors import ChannelDisconnected, ChannelError
from ridetrack.LocationFix import LocationFix, iso_timestamp

logger = logging.getLogger(__name__)

EVENT_IDENTIFY = "connect-user"
EVENT_LOCATION = "location-update"
EVENT_JOB_ASSIGNMENT = "job-assignment"

HEARTBEAT_S = 25.0


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState = ConnectionState.DISCONNECTED
    reconnect_attempts: int = 0
    last_error: Optional[str] = None
    actor_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED


@dataclass(frozen=True)
class InboundMessage:
    event: str
    data: Any
    received_at: str


EventHandler = Callable[[Any], None]
AnyHandler = Callable[[InboundMessage], None]
StatusHandler = Callable[[ConnectionStatus], None]


# -------------------------
# wire format
# -------------------------
def encode_frame(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data})


def parse_frame(raw: str) -> InboundMessage:
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"frame is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ValueError("frame must be a JSON object")
    event = obj.get("event") or obj.get("type")
    if not isinstance(event, str) or not event:
        raise ValueError("frame has no event name")
    return InboundMessage(event=event, data=obj.get("data"), received_at=iso_timestamp())


def to_ws_url(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


# -------------------------
# channel
# -------------------------
class RealtimeChannel:
    """
    One persistent websocket to the tracking server.

    The channel identifies the local actor on every (re)connect, reconnects
    with bounded exponential backoff and dispatches inbound frames by event
    name. Sends are fire-and-forget: nothing is queued while disconnected.
    """

    def __init__(self,
                 max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
                 reconnect_delay_s: float = RECONNECT_DELAY_S,
                 reconnect_delay_max_s: float = RECONNECT_DELAY_MAX_S,
                 connect_timeout_s: float = CONNECT_TIMEOUT_S,
                 platform: str = PLATFORM,
                 session_factory: Optional[Callable[[], Any]] = None):
        if max_reconnect_attempts < 1:
            raise ValueError("max_reconnect_attempts must be >= 1")
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay_s = reconnect_delay_s
        self.reconnect_delay_max_s = reconnect_delay_max_s
        self.connect_timeout_s = connect_timeout_s
        self.platform = platform
        self.session_factory = session_factory or aiohttp.ClientSession

        self.identity: Optional[ActorIdentity] = None
        self.server_url: Optional[str] = None

        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts = 0
        self._last_error: Optional[str] = None
        self._closed = False
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None

        self._handlers: Dict[str, List[EventHandler]] = {}
        self._any_handlers: List[AnyHandler] = []
        self._status_handlers: List[StatusHandler] = []

    @classmethod
    def from_config(cls, config: Config, session_factory: Optional[Callable[[], Any]] = None) -> "RealtimeChannel":
        return cls(
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_delay_s=config.reconnect_delay_s,
            reconnect_delay_max_s=config.reconnect_delay_max_s,
            connect_timeout_s=config.connect_timeout_s,
            platform=config.platform,
            session_factory=session_factory,
        )

    # -------------------------
    # state
    # -------------------------
    @property
    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self._state,
            reconnect_attempts=self._reconnect_attempts,
            last_error=self._last_error,
            actor_id=self.identity.id if self.identity else None,
        )

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._ws is not None

    def backoff_delay(self, attempt: int) -> float:
        return min(self.reconnect_delay_s * (2 ** max(attempt - 1, 0)), self.reconnect_delay_max_s)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self._publish_status()

    def _publish_status(self) -> None:
        if self._closed and self._state is not ConnectionState.DISCONNECTED:
            return
        snapshot = self.status
        for handler in list(self._status_handlers):
            try:
                handler(snapshot)
            except Exception:
                logger.exception("Status handler failed")

    # -------------------------
    # listeners
    # -------------------------
    def on_event(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def on_any(self, handler: AnyHandler) -> None:
        self._any_handlers.append(handler)

    def on_status(self, handler: StatusHandler) -> None:
        self._status_handlers.append(handler)

    def on_job_assignment(self, handler: EventHandler) -> None:
        self.on_event(EVENT_JOB_ASSIGNMENT, handler)

    def _dispatch(self, msg: InboundMessage) -> None:
        for handler in list(self._any_handlers):
            if self._closed:
                return
            try:
                handler(msg)
            except Exception:
                logger.exception("Catch-all handler failed for %s", msg.event)

        handlers = self._handlers.get(msg.event)
        if not handlers:
            logger.debug("No handler for inbound event %s", msg.event)
            return
        for handler in list(handlers):
            if self._closed:
                return
            try:
                handler(msg.data)
            except Exception:
                logger.exception("Handler failed for %s", msg.event)

    def _dispatch_raw(self, raw: str) -> None:
        try:
            msg = parse_frame(raw)
        except ValueError as e:
            logger.warning("Dropping malformed frame: %s", e)
            return
        self._dispatch(msg)

    # -------------------------
    # lifecycle
    # -------------------------
    async def connect(self, server_url: str, identity: ActorIdentity) -> None:
        """
        Open the channel and wait until the server has been told who we are.
        Connect errors are retried; ChannelError is raised only once the
        attempt budget is spent.
        """
        if self._closed:
            raise ChannelError("channel was closed")
        if self._task is not None and not self._task.done():
            await asyncio.shield(self._ready)
            return

        self.server_url = to_ws_url(server_url)
        self.identity = identity
        self._reconnect_attempts = 0
        self._last_error = None
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._task = loop.create_task(self._run())
        await asyncio.shield(self._ready)

    async def disconnect(self) -> None:
        """Close for good. Safe to call at any time, more than once."""
        if self._closed:
            return
        self._closed = True
        self._set_state(ConnectionState.DISCONNECTED)
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(ChannelError("channel was closed"))
            # nobody may be awaiting it any more
            self._ready.exception()
        logger.info("Socket disconnected")

    async def _run(self) -> None:
        session = self.session_factory()
        try:
            while not self._closed:
                if await self._open(session):
                    await self._read_loop()
                    if self._closed:
                        return
                    logger.info("Disconnected from server, reconnecting")
                    continue
                if self._reconnect_attempts >= self.max_reconnect_attempts:
                    self._give_up()
                    return
                delay = self.backoff_delay(self._reconnect_attempts)
                logger.info("Reconnection attempt %d in %.1fs", self._reconnect_attempts + 1, delay)
                await asyncio.sleep(delay)
        finally:
            ws, self._ws = self._ws, None
            if ws is not None and not ws.closed:
                await ws.close()
            await session.close()

    async def _open(self, session) -> bool:
        reconnecting = self._reconnect_attempts > 0 or self._ready.done()
        self._set_state(ConnectionState.RECONNECTING if reconnecting else ConnectionState.CONNECTING)
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(self.server_url, heartbeat=HEARTBEAT_S),
                timeout=self.connect_timeout_s,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._reconnect_attempts += 1
            self._last_error = str(e) or e.__class__.__name__
            logger.warning("Socket connection error: %s", self._last_error)
            self._publish_status()
            return False

        self._ws = ws
        try:
            await self._identify(ws)
        except (aiohttp.ClientError, ConnectionError) as e:
            self._ws = None
            if not ws.closed:
                await ws.close()
            self._reconnect_attempts += 1
            self._last_error = f"identification failed: {e}"
            logger.warning("Failed to identify: %s", e)
            self._publish_status()
            return False

        # ready only once the server knows who we are
        self._state = ConnectionState.CONNECTED
        was_reconnect = self._reconnect_attempts > 0
        self._reconnect_attempts = 0
        self._last_error = None
        if was_reconnect:
            logger.info("Reconnected to %s", self.server_url)
        else:
            logger.info("Connected to %s", self.server_url)
        self._publish_status()
        if not self._ready.done():
            self._ready.set_result(None)
        return True

    async def _read_loop(self) -> None:
        ws = self._ws
        async for msg in ws:
            if self._closed:
                return
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatch_raw(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                self._last_error = str(ws.exception())
                break
        self._ws = None
        if not self._closed:
            self._state = ConnectionState.RECONNECTING

    def _give_up(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        logger.error("Failed to reconnect after %d attempts", self._reconnect_attempts)
        self._publish_status()
        if not self._ready.done():
            self._ready.set_exception(ChannelError(
                f"no connection after {self._reconnect_attempts} attempts: {self._last_error}"))

    # -------------------------
    # outbound
    # -------------------------
    async def _emit(self, event: str, data: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED or self._closed:
            raise ChannelDisconnected(f"cannot send {event}: socket not connected")
        await ws.send_str(encode_frame(event, data))

    async def _identify(self, ws) -> None:
        user = {
            "userId": self.identity.id,
            "role": self.identity.role.value,
            "timestamp": iso_timestamp(),
            "platform": self.platform,
        }
        await ws.send_str(encode_frame(EVENT_IDENTIFY, user))
        logger.debug("Identified as %s", user)

    async def send_message(self, event: str, data: Dict[str, Any]) -> bool:
        try:
            await self._emit(event, data)
        except ChannelDisconnected as e:
            logger.debug("%s", e)
            return False
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.warning("Failed to send %s: %s", event, e)
            return False
        return True

    async def send_location(self, fix: LocationFix) -> bool:
        if not self.is_connected or self.identity is None:
            return False
        payload = {
            self.identity.id_field: self.identity.id,
            "lat": fix.latitude,
            "lng": fix.longitude,
            "timestamp": fix.iso_timestamp,
        }
        return await self.send_message(EVENT_LOCATION, payload)
