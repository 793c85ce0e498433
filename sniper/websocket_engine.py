import asyncio
import aiohttp
import json
import time
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from .models import ConnectionState, ConnectionStatus, Event
from .retry import Backoff, RetryPolicy

SUBSCRIBE_MSG = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "newPairSubscribe",
    "params": {"include_pumpfun": True},
}


class FeedDecodeError(Exception):
    pass


class ReconnectExhausted(Exception):
    """Every reconnect attempt failed. The feed stays down until re-armed."""


def _section(parent: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise FeedDecodeError(f"'{key}' is {type(value).__name__}, expected an object")
    return value


def decode_message(raw: str, received_at: float) -> Optional[Event]:
    """
    Feed frame -> Event. Returns None for frames that are not new-asset
    notifications (subscription acks and the like). Raises FeedDecodeError
    for anything malformed.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise FeedDecodeError(f"not JSON: {e}") from e
    if not isinstance(data, dict):
        raise FeedDecodeError(f"unexpected frame type {type(data).__name__}")

    if data.get('method') != 'newPairNotification':
        return None

    params = _section(data, 'params')
    pair = _section(params, 'pair')
    base = _section(pair, 'baseToken')
    mint = base.get('account')
    if not isinstance(mint, str) or not mint.strip():
        raise FeedDecodeError("notification without pair.baseToken.account")

    try:
        created_at = float(params['blockTime'])
    except (KeyError, TypeError, ValueError) as e:
        raise FeedDecodeError(f"bad blockTime for {mint}: {params.get('blockTime')!r}") from e

    metadata = _section(_section(base, 'info'), 'metadata')
    return Event(
        asset_id=mint.strip(),
        created_at=created_at,
        received_at=received_at,
        metadata={
            "name": metadata.get('name'),
            "symbol": metadata.get('symbol'),
            "signature": params.get('signature'),
            "slot": params.get('slot'),
            "amm_account": pair.get('ammAccount'),
        },
    )


class WebSocketEngine:
    """
    Holds the single feed subscription and pushes decoded Events to `on_event`.

    Reconnects with capped exponential backoff. While connected, two separate
    timers run: a ping heartbeat, and a liveness monitor that closes the
    socket when nothing at all has arrived for too long.
    """
    def __init__(self, config: dict, on_event: Callable[[Event], Any], logger: logging.Logger,
                 session: Optional[aiohttp.ClientSession] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        feed = config['feed']
        self.url = feed['url']
        self.api_key = config.get('credentials', {}).get('feed_api_key', '')
        self.heartbeat_interval = feed['heartbeat_interval_s']
        self.liveness_timeout = feed['liveness_timeout_s']
        self.liveness_check_interval = feed['liveness_check_interval_s']
        self.backoff = RetryPolicy(
            max_attempts=feed['max_reconnect_attempts'],
            backoff=Backoff.EXPONENTIAL,
            interval=feed['reconnect_base_s'],
            cap=feed['reconnect_cap_s'],
        )

        self.on_event = on_event
        self.logger = logger
        self.conn = ConnectionState()
        self.failure: Optional[ReconnectExhausted] = None
        self.scheduled_delays: List[float] = []
        self.events_delivered = 0
        self.decode_errors = 0
        self.handler_errors = 0
        self.stale_closes = 0

        self.running = False
        self._sleep = sleep
        self._session = session
        self._owns_session = session is None
        self.task: Optional[asyncio.Task] = None
        self._timers: List[asyncio.Task] = []

    @property
    def status(self) -> ConnectionStatus:
        return self.conn.status

    async def start(self):
        self.running = True
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, sock_connect=10))
        self.logger.info(f"⚡ CONNECTING FEED: {self.url}")
        self.task = asyncio.create_task(self._run_stream_forever())

    async def reconnect(self):
        """Manual re-arm after reconnects were exhausted."""
        if self.task is not None and not self.task.done():
            return
        self.failure = None
        self.conn.attempts = 0
        self.running = True
        self.logger.info("🔌 Re-arming feed connection")
        self.task = asyncio.create_task(self._run_stream_forever())

    async def _run_stream_forever(self):
        while self.running:
            self.conn.status = ConnectionStatus.CONNECTING
            try:
                await self._connect_and_listen()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"WS Error: {e!r}")
            finally:
                self._stop_timers()
                self.conn.ws = None
                self.conn.status = ConnectionStatus.DISCONNECTED

            if not self.running:
                break

            if self.backoff.exhausted(self.conn.attempts):
                self.failure = ReconnectExhausted(
                    f"gave up after {self.conn.attempts} reconnect attempts to {self.url}")
                self.conn.status = ConnectionStatus.FAILED
                self.logger.critical(f"🚨 FEED DOWN: {self.failure}. Restart or re-arm to resume.")
                return

            delay = self.backoff.delay(self.conn.attempts)
            self.conn.attempts += 1
            self.scheduled_delays.append(delay)
            self.logger.warning(f"Reconnecting (attempt {self.conn.attempts}) in {delay:.0f}s...")
            await self._sleep(delay)

    async def _connect_and_listen(self):
        ws = await self._session.ws_connect(self.url, headers={"X-API-KEY": self.api_key}, autoping=False)
        self.conn.ws = ws
        self.conn.status = ConnectionStatus.CONNECTED
        self.conn.attempts = 0
        self.conn.last_inbound = time.time()
        self.logger.info("✅ Feed connected")

        try:
            await ws.send_json(SUBSCRIBE_MSG)
            self.logger.info("📡 Subscribed to new asset notifications")
            self._start_timers(ws)

            async for msg in ws:
                received_at = time.time()
                self.conn.last_inbound = received_at

                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data, received_at)
                elif msg.type == aiohttp.WSMsgType.PING:
                    await ws.pong(msg.data)
                elif msg.type == aiohttp.WSMsgType.PONG:
                    self.logger.debug("Received WebSocket pong")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self.logger.error(f"WS transport error: {ws.exception()!r}")
                    break
        finally:
            await ws.close()
            self.logger.warning(f"Feed connection closed (code {ws.close_code})")

    def _handle_text(self, raw: str, received_at: float):
        try:
            event = decode_message(raw, received_at)
        except FeedDecodeError as e:
            self.decode_errors += 1
            self.logger.warning(f"Skipping malformed feed message: {e}")
            return
        if event is None:
            return
        self.events_delivered += 1
        try:
            self.on_event(event)
        except Exception:
            self.handler_errors += 1
            self.logger.exception(f"Event handler failed for {event.asset_id}")

    # --- TIMERS ---

    def _start_timers(self, ws):
        self._stop_timers()
        self._timers = [
            asyncio.create_task(self._heartbeat_loop(ws)),
            asyncio.create_task(self._liveness_loop(ws)),
        ]

    def _stop_timers(self):
        for t in self._timers:
            t.cancel()
        self._timers = []

    async def _heartbeat_loop(self, ws):
        while not ws.closed:
            await asyncio.sleep(self.heartbeat_interval)
            if ws.closed:
                break
            try:
                await ws.ping()
                self.logger.debug("Sent WebSocket ping")
            except ConnectionError as e:
                self.logger.error(f"Ping failed: {e}")

    async def _liveness_loop(self, ws):
        while not ws.closed:
            await asyncio.sleep(self.liveness_check_interval)
            silence = self.conn.silence
            if silence > self.liveness_timeout:
                self.stale_closes += 1
                self.logger.warning(f"⚠️ Feed silent for {silence:.0f}s, closing socket to force a reconnect")
                await ws.close()
                break

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.conn.status.value,
            "attempts": self.conn.attempts,
            "silence": self.conn.silence,
            "events": self.events_delivered,
            "decode_errors": self.decode_errors,
            "handler_errors": self.handler_errors,
            "failure": str(self.failure) if self.failure else None,
        }

    async def shutdown(self):
        self.running = False
        self._stop_timers()
        if self.conn.ws is not None:
            await self.conn.ws.close()
        if self.task is not None:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        if self._owns_session and self._session is not None:
            await self._session.close()
