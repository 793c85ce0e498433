"""Shared fixtures and in-memory fakes for the sniper tests."""

import asyncio
import logging
import time
from types import SimpleNamespace

import aiohttp
import pytest

from sniper.config import build_config
from sniper.models import Event, TxOutcome
from sniper.state import ProcessState

# Every delay at zero so sequences finish instantly
FAST = {
    "acquire": {"settle_delay_ms": 0, "confirm_interval_ms": 0},
    "partial_dispose": {"delay_ms": 0, "retry_interval_ms": 0},
    "full_dispose": {"delay_ms": 0, "retry_interval_ms": 0, "settle_delay_ms": 0, "confirm_interval_ms": 0},
}


def make_config(overrides=None):
    cfg = build_config(FAST)
    if overrides:
        _merge(cfg, overrides)
    cfg["credentials"] = {"private_key": "", "public_key": "", "feed_api_key": "test-key"}
    cfg["execution"]["rpc_url"] = "http://rpc.test"
    return cfg


def _merge(cfg, overrides):
    for section, values in overrides.items():
        cfg.setdefault(section, {}).update(values)
    return cfg


def make_event(asset_id="Mint111", age_ms=400.0, **metadata):
    now = time.time()
    return Event(asset_id=asset_id, created_at=now - age_ms / 1000.0, received_at=now,
                 metadata={"name": "Test", "symbol": "TST", **metadata})


# ------------------------------------------------------------------ #
# Trade collaborators
# ------------------------------------------------------------------ #


class FakeGateway:
    """Returns tx-<n> per call; `errors` scripts one exception (or None) per call."""

    def __init__(self, errors=None):
        self.requests = []
        self.errors = list(errors or [])

    async def submit(self, request):
        self.requests.append(request)
        if self.errors:
            err = self.errors.pop(0)
            if err is not None:
                raise err
        return f"tx-{len(self.requests)}"


class FakeLedger:
    """Replays scripted outcomes in order, then answers `default`."""

    def __init__(self, outcomes=None, default=TxOutcome.CONFIRMED_SUCCESS):
        self.queries = []
        self.outcomes = list(outcomes or [])
        self.default = default
        self.sent = []

    async def get_outcome(self, tx_id):
        self.queries.append(tx_id)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return self.default

    async def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return "broadcast-sig"


# ------------------------------------------------------------------ #
# HTTP / websocket fakes
# ------------------------------------------------------------------ #


class FakeResponse:
    def __init__(self, status=200, body=None, text="", raw=b""):
        self.status = status
        self.body = body
        self._text = text
        self.raw = raw

    async def json(self, content_type=None):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

    async def text(self):
        return self._text

    async def read(self):
        return self.raw

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeHttpSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.posts = []
        self.closed = False

    def post(self, url, json=None):
        self.posts.append((url, json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


def ws_text(data):
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


def ws_ping(data=b"hb"):
    return SimpleNamespace(type=aiohttp.WSMsgType.PING, data=data)


class FakeWebSocket:
    """Yields scripted frames; with hold_open it then blocks until closed."""

    def __init__(self, messages=(), hold_open=False):
        self._messages = list(messages)
        self.hold_open = hold_open
        self.sent = []
        self.pongs = []
        self.pings = 0
        self.closed = False
        self.close_code = None
        self._closed_event = asyncio.Event()

    async def send_json(self, data):
        self.sent.append(data)

    async def ping(self, data=b""):
        self.pings += 1

    async def pong(self, data=b""):
        self.pongs.append(data)

    async def close(self, code=1000):
        if not self.closed:
            self.closed = True
            self.close_code = code
            self._closed_event.set()
        return True

    def exception(self):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        if self._messages:
            await asyncio.sleep(0)
            return self._messages.pop(0)
        if self.hold_open:
            await self._closed_event.wait()
        raise StopAsyncIteration


class FakeWsSession:
    """ws_connect replays a script of FakeWebSocket / exceptions, then refuses."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    async def ws_connect(self, url, **kwargs):
        self.calls.append((url, kwargs))
        item = self.script.pop(0) if self.script else aiohttp.ClientConnectionError("refused")
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        pass


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def logger():
    return logging.getLogger("sniper.tests")


@pytest.fixture
def state():
    return ProcessState()
