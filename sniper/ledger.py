# sniper/ledger.py
import asyncio
import base64
import logging
from typing import Any, List, Optional

import aiohttp

from .models import TxOutcome

# Signatures minted by the gateway in dry-run mode; never sent to the chain
DRY_RUN_PREFIX = "dryrun-"


class LedgerError(Exception):
    """RPC transport failure or an `error` payload from the node."""


class LedgerClient:
    """
    Solana JSON-RPC access for the sniper.
    Answers "did this transaction land?" and broadcasts signed transactions.
    Owns its HTTP session unless one is handed in.
    """
    def __init__(self, config: dict, logger: logging.Logger, session: Optional[aiohttp.ClientSession] = None):
        self.rpc_url = config['execution']['rpc_url']
        self.timeout = aiohttp.ClientTimeout(total=config['execution']['network_timeout_ms'] / 1000)
        self.logger = logger
        self._session = session
        self._owns_session = session is None
        self._request_id = 0

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def initialize(self) -> bool:
        """
        Startup diagnostic: is the RPC node reachable and healthy?
        """
        self.logger.info("📡 TESTING RPC CONNECTION...")
        try:
            health = await self._rpc("getHealth", [])
            slot = await self._rpc("getSlot", [{"commitment": "confirmed"}])
            self.logger.info(f"   ✅ RPC        | Health: {health} | Slot: {slot}")
            return True
        except LedgerError as e:
            self.logger.critical(f"   ❌ RPC        | NODE ERROR: {e}")
        except asyncio.TimeoutError:
            self.logger.error("   ❌ RPC        | TIMEOUT: Node is slow or down.")
        except aiohttp.ClientError as e:
            self.logger.error(f"   ❌ RPC        | UNREACHABLE: {e}")
        return False

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        async with self.session.post(self.rpc_url, json=payload) as resp:
            if resp.status != 200:
                text = await resp.text()
                raise LedgerError(f"{method}: HTTP {resp.status} -> {text}")
            try:
                body = await resp.json(content_type=None)
            except ValueError as e:
                raise LedgerError(f"{method}: response is not JSON: {e}") from e

        if not isinstance(body, dict):
            raise LedgerError(f"{method}: unexpected response body {type(body).__name__}")
        if body.get("error"):
            err = body["error"]
            if isinstance(err, dict):
                raise LedgerError(f"{method}: {err.get('code')} {err.get('message')}")
            raise LedgerError(f"{method}: {err}")
        return body.get("result")

    async def get_outcome(self, tx_id: str) -> TxOutcome:
        """
        Looks a transaction up once. Never raises: transport and RPC problems
        come back as QUERY_ERROR, which callers treat like NOT_FOUND.
        """
        if tx_id.startswith(DRY_RUN_PREFIX):
            return TxOutcome.CONFIRMED_SUCCESS

        try:
            tx = await self._rpc("getTransaction", [
                tx_id,
                {"encoding": "json", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
            ])
        except (LedgerError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Ledger query failed for {tx_id}: {e}")
            return TxOutcome.QUERY_ERROR

        if tx is None:
            return TxOutcome.NOT_FOUND

        if not isinstance(tx, dict):
            self.logger.warning(f"Ledger returned an unreadable transaction for {tx_id}: {tx!r}")
            return TxOutcome.QUERY_ERROR

        # Success requires meta present with err null
        meta = tx.get("meta")
        if not isinstance(meta, dict):
            self.logger.error(f"Transaction {tx_id} has no status meta, treating as failed")
            return TxOutcome.CONFIRMED_FAILURE
        if meta.get("err") is None:
            return TxOutcome.CONFIRMED_SUCCESS

        self.logger.error(f"Transaction {tx_id} failed on-chain: {meta.get('err')}")
        return TxOutcome.CONFIRMED_FAILURE

    async def send_raw_transaction(self, raw: bytes) -> str:
        """Broadcasts a signed transaction and returns its signature."""
        encoded = base64.b64encode(raw).decode("ascii")
        signature = await self._rpc("sendTransaction", [
            encoded,
            {"encoding": "base64", "preflightCommitment": "confirmed"},
        ])
        if not signature:
            raise LedgerError("sendTransaction returned no signature")
        return signature

    async def shutdown(self):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
