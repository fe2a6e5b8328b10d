"""
Solana RPC client service for interacting with the Solana blockchain.
Provides signature listing, transaction fetch and the logsSubscribe
websocket subscription used by the indexers.
"""

import asyncio
import json
import uuid
from typing import List, Any, Optional, Union
from dataclasses import dataclass, field

import websockets
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey
from solders.signature import Signature
import structlog

from solana_indexer.core.config import Settings, SolanaConfig, settings
from solana_indexer.core.exceptions import SolanaRPCError, SubscriptionError


logger = structlog.get_logger(__name__)


@dataclass
class SignatureInfo:
    """A transaction signature as returned by getSignaturesForAddress."""
    signature: str
    slot: int
    block_time: Optional[int] = None
    err: Optional[Any] = None
    memo: Optional[str] = None


@dataclass
class TransactionInfo:
    """Transaction information from Solana blockchain."""
    signature: str
    slot: int
    block_time: Optional[int]
    err: Optional[Any]
    logs: List[str] = field(default_factory=list)
    program_ids: List[str] = field(default_factory=list)
    inner_program_ids: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.err is None

    def invokes(self, program_id: str) -> bool:
        """Whether the program is executed by a top-level or inner instruction."""
        return program_id in self.program_ids or program_id in self.inner_program_ids


def _program_id_of(instruction: Any, account_keys: List[str]) -> Optional[str]:
    """Resolve the invoked program of a parsed, partially decoded or compiled instruction."""
    program_id = getattr(instruction, "program_id", None)
    if program_id is not None:
        return str(program_id)
    index = getattr(instruction, "program_id_index", None)
    if index is not None and index < len(account_keys):
        return account_keys[index]
    return None


class SolanaClient:
    """
    Async Solana RPC client for the indexers.

    Provides high-level methods for:
    - Listing transaction signatures for an address, newest first
    - Fetching a single transaction with its logs and invoked programs
    """

    def __init__(self, config: Optional[Settings] = None):
        """Initialize Solana client with configuration."""
        self.config = config or settings
        self.rpc_config = SolanaConfig.get_rpc_config(self.config)
        self.commitment = Commitment(self.rpc_config["commitment"])
        self.client = AsyncClient(
            endpoint=self.rpc_config["endpoint"],
            commitment=self.commitment,
            timeout=self.rpc_config["timeout"]
        )
        self.logger = logger.bind(service="solana_client")

    async def close(self):
        """Close the RPC client connection."""
        await self.client.close()

    async def get_health(self) -> bool:
        """Check if the RPC endpoint is healthy."""
        try:
            return await self.client.is_connected()
        except Exception as e:
            self.logger.error("Health check failed", error=str(e))
            return False

    async def get_signatures_for_address(
        self,
        address: Union[str, Pubkey],
        limit: int = 1000,
        before: Optional[str] = None
    ) -> List[SignatureInfo]:
        """Get transaction signatures for an address, newest first."""
        try:
            if isinstance(address, str):
                address = Pubkey.from_string(address)

            response = await self.client.get_signatures_for_address(
                address,
                limit=limit,
                before=Signature.from_string(before) if before else None,
                commitment=self.commitment
            )

            return [
                SignatureInfo(
                    signature=str(sig_info.signature),
                    slot=sig_info.slot,
                    block_time=sig_info.block_time,
                    err=str(sig_info.err) if sig_info.err is not None else None,
                    memo=sig_info.memo
                )
                for sig_info in response.value
            ]

        except Exception as e:
            self.logger.error("Failed to get signatures", address=str(address), error=str(e))
            raise SolanaRPCError(f"Failed to get signatures for address: {e}") from e

    async def get_transaction(self, signature: str) -> Optional[TransactionInfo]:
        """Get a transaction with its logs and invoked program ids, or None if absent."""
        try:
            response = await self.client.get_transaction(
                Signature.from_string(signature),
                encoding="jsonParsed",
                commitment=self.commitment,
                max_supported_transaction_version=0
            )
        except Exception as e:
            self.logger.error("Failed to get transaction", signature=signature, error=str(e))
            raise SolanaRPCError(f"Failed to get transaction: {e}") from e

        if not response.value:
            return None

        tx = response.value
        meta = tx.transaction.meta
        message = tx.transaction.transaction.message
        account_keys = [str(getattr(key, "pubkey", key)) for key in message.account_keys]

        program_ids = [
            program_id for program_id in (
                _program_id_of(instr, account_keys) for instr in message.instructions
            ) if program_id
        ]

        inner_program_ids = []
        if meta and meta.inner_instructions:
            for inner in meta.inner_instructions:
                for instr in inner.instructions:
                    program_id = _program_id_of(instr, account_keys)
                    if program_id:
                        inner_program_ids.append(program_id)

        return TransactionInfo(
            signature=signature,
            slot=tx.slot,
            block_time=tx.block_time,
            err=str(meta.err) if meta and meta.err is not None else None,
            logs=list(meta.log_messages or []) if meta else [],
            program_ids=program_ids,
            inner_program_ids=inner_program_ids
        )


class LogsSubscription:
    """
    logsSubscribe websocket subscription for one address.

    Notifications are pushed onto an asyncio.Queue by a reader task and
    consumed with next_signature(). A dropped connection is surfaced to the
    consumer as an exception; close() wakes the consumer with None.
    """

    def __init__(self, address: str, config: Optional[Settings] = None):
        self.address = address
        self.ws_config = SolanaConfig.get_websocket_config(config or settings)
        self.websocket = None
        self.subscription_id: Optional[int] = None
        self.queue: asyncio.Queue = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None
        self.logger = logger.bind(service="logs_subscription", address=address)

    async def open(self) -> int:
        """Connect and subscribe. Raises SubscriptionError if the provider rejects the request."""
        try:
            self.websocket = await websockets.connect(
                self.ws_config["endpoint"],
                ping_interval=self.ws_config["ping_interval"],
                ping_timeout=self.ws_config["ping_timeout"],
                max_size=None
            )
        except Exception as e:
            raise SubscriptionError(f"WebSocket connection failed: {e}") from e

        request_id = str(uuid.uuid4())
        await self.websocket.send(json.dumps({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self.address]},
                {"commitment": self.ws_config["commitment"]}
            ]
        }))

        # Wait for the confirmation that matches our request id
        async for raw_message in self.websocket:
            message = json.loads(raw_message)
            if message.get("id") != request_id:
                continue
            if "error" in message:
                error = message["error"] or {}
                await self._close_socket()
                raise SubscriptionError(
                    error.get("message", "Subscription rejected"),
                    rpc_code=error.get("code")
                )
            self.subscription_id = message.get("result")
            break
        else:
            raise SubscriptionError("WebSocket closed before subscription was confirmed")

        self._reader = asyncio.create_task(self._read_notifications())
        self.logger.info("Subscribed to program logs", subscription_id=self.subscription_id)
        return self.subscription_id

    async def _read_notifications(self):
        try:
            async for raw_message in self.websocket:
                try:
                    message = json.loads(raw_message)
                except json.JSONDecodeError as e:
                    self.logger.warning("Failed to parse WebSocket message", error=str(e))
                    continue

                if message.get("method") != "logsNotification":
                    continue

                value = message.get("params", {}).get("result", {}).get("value", {})
                signature = value.get("signature")
                if signature:
                    await self.queue.put(signature)
            await self.queue.put(SubscriptionError("WebSocket connection closed"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.queue.put(SubscriptionError(f"WebSocket receive failed: {e}"))

    async def next_signature(self) -> Optional[str]:
        """Next notified signature; None once closed. Raises on a dropped connection."""
        item = await self.queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        """Unsubscribe and close the socket. Always wakes a waiting consumer."""
        try:
            if self._reader and not self._reader.done():
                self._reader.cancel()
            if self.websocket is not None and self.subscription_id is not None:
                try:
                    await self.websocket.send(json.dumps({
                        "jsonrpc": "2.0",
                        "id": str(uuid.uuid4()),
                        "method": "logsUnsubscribe",
                        "params": [self.subscription_id]
                    }))
                except websockets.ConnectionClosed:
                    self.logger.debug("Connection already closed, skipping logsUnsubscribe")
        finally:
            self.subscription_id = None
            await self.queue.put(None)
            await self._close_socket()

    async def _close_socket(self):
        if self.websocket is not None:
            websocket, self.websocket = self.websocket, None
            await websocket.close()
