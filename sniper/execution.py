# sniper/execution.py
import asyncio
import logging
import uuid
from typing import Optional

import aiohttp
import base58
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from .config import ConfigError
from .ledger import DRY_RUN_PREFIX, LedgerClient, LedgerError
from .models import TradeRequest


class ExecutionError(Exception):
    """The trade service refused to build the transaction, or it could not be broadcast."""


class ExecutionGateway:
    """
    Turns a TradeRequest into a transaction signature.
    The trade service builds the transaction; we only sign it with the held
    keypair and broadcast it through the ledger. One attempt per call, the
    caller owns the retry policy.
    """
    def __init__(self, config: dict, ledger: LedgerClient, logger: logging.Logger,
                 session: Optional[aiohttp.ClientSession] = None, keypair: Optional[Keypair] = None):
        self.trade_url = config['execution']['trade_url']
        self.timeout = aiohttp.ClientTimeout(total=config['execution']['network_timeout_ms'] / 1000)
        self.ledger = ledger
        self.logger = logger
        self.dry_run = config['system'].get('dry_run', False)
        self._session = session
        self._owns_session = session is None

        creds = config.get('credentials', {})
        if keypair is None:
            try:
                keypair = Keypair.from_bytes(base58.b58decode(creds.get('private_key', '')))
            except (ValueError, TypeError) as e:
                raise ConfigError(f"PRIVATE_KEY is not a valid base58 keypair: {e}") from e
        self.keypair = keypair

        derived = str(keypair.pubkey())
        self.public_key = creds.get('public_key') or derived
        if self.public_key != derived:
            self.logger.warning(f"PUBLIC_KEY {self.public_key} does not match signing key {derived}")

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def submit(self, request: TradeRequest) -> str:
        """
        Returns the submitted transaction signature, or raises ExecutionError.
        """
        action = request.side.value.upper()

        # 1. DRY RUN CHECK
        if self.dry_run:
            signature = f"{DRY_RUN_PREFIX}{uuid.uuid4().hex}"
            self.logger.info(f"🔵 DRY RUN: {action} {request.asset_id} | Amt: {request.amount} -> {signature}")
            return signature

        self.logger.info(f"⚡ REQUESTING {action} TX: {request.asset_id} | Amt: {request.amount} | Pool: {request.pool}")

        # 2. BUILD (remote)
        try:
            async with self.session.post(self.trade_url, json=request.to_payload(self.public_key)) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise ExecutionError(f"{action} build failed: HTTP {resp.status} -> {text}")
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExecutionError(f"{action} build request failed: {e!r}") from e

        # 3. SIGN (local)
        try:
            unsigned = VersionedTransaction.from_bytes(data)
            signed = VersionedTransaction(unsigned.message, [self.keypair])
        except Exception as e:
            raise ExecutionError(f"{action} transaction could not be decoded/signed: {e}") from e

        # 4. BROADCAST
        try:
            signature = await self.ledger.send_raw_transaction(bytes(signed))
        except (LedgerError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExecutionError(f"{action} broadcast failed: {e}") from e

        self.logger.info(f"✅ {action} {request.asset_id} sent: {signature}")
        self.logger.info(f"   https://solscan.io/tx/{signature}")
        return str(signature)

    async def shutdown(self):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
