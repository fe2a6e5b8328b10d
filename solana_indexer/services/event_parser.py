"""
Event parser for the staking program's Anchor events.

Anchor emits events as "Program data: <base64>" log lines. The payload is an
8-byte discriminator (sha256("event:<Name>")[:8]) followed by the Borsh
encoded struct: little-endian integers and raw 32-byte public keys, no
padding and no length prefixes.
"""

import base64
import binascii
import struct
import time
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field

import base58
import structlog

from solana_indexer.models.event import EventType
from solana_indexer.services.solana_client import TransactionInfo


logger = structlog.get_logger(__name__)

PROGRAM_DATA_PREFIX = "Program data: "

DISCRIMINATOR_SIZE = 8
PUBKEY_SIZE = 32
U64_SIZE = 8

# Discriminators observed on chain for the staking program's events
DISCRIMINATORS: Dict[bytes, EventType] = {
    bytes.fromhex("dc82918e6d7b2664"): EventType.DEPOSIT,     # TokensStaked
    bytes.fromhex("1e746e935759099e"): EventType.WITHDRAW,    # TokensWithdrawn
    bytes.fromhex("e44b2b6709c4b604"): EventType.FEE_UPDATE,  # FeeUpdated
}

# Field order and kind for each event; "pubkey" is 32 bytes, "u64" is 8 bytes
EVENT_LAYOUTS: Dict[EventType, Tuple[Tuple[str, str], ...]] = {
    EventType.DEPOSIT: (
        ("staker", "pubkey"),
        ("amount", "u64"),
        ("total_staked", "u64"),
    ),
    EventType.WITHDRAW: (
        ("staker", "pubkey"),
        ("amount", "u64"),
        ("fee", "u64"),
        ("total_staked", "u64"),
    ),
    EventType.FEE_UPDATE: (
        ("old_fee", "u64"),
        ("new_fee", "u64"),
    ),
}

FIELD_SIZES = {"pubkey": PUBKEY_SIZE, "u64": U64_SIZE}


def layout_size(event_type: EventType) -> int:
    """Payload bytes required after the discriminator."""
    return sum(FIELD_SIZES[kind] for _, kind in EVENT_LAYOUTS[event_type])


@dataclass
class DecodedEvent:
    """An event decoded from a single log line."""
    event_type: EventType
    signature: str
    slot: int
    block_time: Optional[int]
    program_id: str
    log_index: int
    data: Dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedTransaction:
    """A transaction that invoked the monitored program, with its events."""
    signature: str
    slot: int
    block_time: Optional[int]
    err: Optional[Any]
    logs: List[str]
    events: List[DecodedEvent] = field(default_factory=list)


class EventParser:
    """
    Decoder for staking program events.

    Pure: performs no I/O and never raises for malformed input. A bad log
    line is skipped with a diagnostic and the rest of the transaction is
    still decoded.
    """

    def __init__(self, log: Optional[structlog.stdlib.BoundLogger] = None):
        self.logger = (log or logger).bind(service="event_parser")

    def parse_transaction(self, tx_info: TransactionInfo, program_id: str) -> Optional[ParsedTransaction]:
        """
        Decode a transaction for a monitored program.

        Args:
            tx_info: Transaction fetched from the RPC
            program_id: Monitored program address

        Returns:
            None when the program is not invoked by any top-level or inner
            instruction, otherwise the transaction with its decoded events
            (empty for failed transactions or transactions without logs).
        """
        if not tx_info.invokes(program_id):
            self.logger.debug(
                "Skipping transaction that does not invoke program",
                signature=tx_info.signature,
                program_id=program_id,
                invoked=tx_info.program_ids
            )
            return None

        block_time = tx_info.block_time or int(time.time())
        parsed = ParsedTransaction(
            signature=tx_info.signature,
            slot=tx_info.slot,
            block_time=block_time,
            err=tx_info.err,
            logs=list(tx_info.logs),
        )

        if tx_info.err is not None or not tx_info.logs:
            return parsed

        for log_index, log_line in enumerate(tx_info.logs):
            if not log_line.startswith(PROGRAM_DATA_PREFIX):
                continue
            event = self.decode_log_line(
                log_line,
                log_index=log_index,
                signature=tx_info.signature,
                slot=tx_info.slot,
                block_time=block_time,
                program_id=program_id
            )
            if event:
                parsed.events.append(event)

        if parsed.events:
            self.logger.info(
                "Parsed transaction events",
                signature=tx_info.signature,
                event_count=len(parsed.events),
                event_types=[e.event_type.value for e in parsed.events]
            )

        return parsed

    def decode_log_line(
        self,
        log_line: str,
        log_index: int,
        signature: str,
        slot: int,
        block_time: Optional[int],
        program_id: str
    ) -> Optional[DecodedEvent]:
        """Decode one "Program data:" line; None if unknown or malformed."""
        # sol_log_data emits one base64 chunk per field; the event is the first
        chunks = log_line[len(PROGRAM_DATA_PREFIX):].split()
        data_part = chunks[0] if chunks else ""

        try:
            payload = base64.b64decode(data_part, validate=True)
        except binascii.Error as e:
            self.logger.warning("Invalid base64 event data", signature=signature, log_index=log_index, error=str(e))
            return None

        fields = self.decode_payload(payload, signature=signature, log_index=log_index)
        if fields is None:
            return None

        event_type, data = fields
        return DecodedEvent(
            event_type=event_type,
            signature=signature,
            slot=slot,
            block_time=block_time,
            program_id=program_id,
            log_index=log_index,
            data=data
        )

    def decode_payload(
        self,
        payload: bytes,
        signature: str = "",
        log_index: int = 0
    ) -> Optional[Tuple[EventType, Dict[str, str]]]:
        """Decode discriminator + fields; None for unknown or malformed payloads."""
        if len(payload) < DISCRIMINATOR_SIZE:
            self.logger.warning(
                "Event payload shorter than discriminator",
                signature=signature,
                log_index=log_index,
                data_len=len(payload)
            )
            return None

        event_type = DISCRIMINATORS.get(payload[:DISCRIMINATOR_SIZE])
        if event_type is None:
            self.logger.debug(
                "Unknown event discriminator",
                signature=signature,
                discriminator=payload[:DISCRIMINATOR_SIZE].hex()
            )
            return None

        body = payload[DISCRIMINATOR_SIZE:]
        needed = layout_size(event_type)
        if len(body) < needed:
            self.logger.warning(
                "Insufficient data for event",
                signature=signature,
                log_index=log_index,
                event_type=event_type.value,
                data_len=len(body),
                needed=needed
            )
            return None

        data = {}
        offset = 0
        for name, kind in EVENT_LAYOUTS[event_type]:
            if kind == "pubkey":
                data[name] = base58.b58encode(body[offset:offset + PUBKEY_SIZE]).decode("ascii")
                offset += PUBKEY_SIZE
            else:
                data[name] = str(struct.unpack_from("<Q", body, offset)[0])
                offset += U64_SIZE

        return event_type, data

