"""
Explorer Domain Models - Canonical records for explorer display.

Every record is an immutable value object built once from a single upstream
response. Optional fields are None when the upstream did not report them, so
the presentation layer can tell "unknown" apart from "zero" or "empty".

to_dict() gives the canonical (display/API) shape. to_raw() re-encodes a
record under the primary upstream field names, so that normalizing it again
reproduces the same record.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from explorer_rpc.fields import encode_primary
from explorer_rpc.timeutil import millis_to_iso


T = TypeVar("T")


class TxStatus(Enum):
    """Canonical transaction lifecycle status."""
    MEMPOOL = "mempool"
    INCLUDED = "included"
    FINALIZED = "finalized"
    REJECTED = "rejected"
    PRUNED = "pruned"
    UNKNOWN = "unknown"


class ErrorKind(Enum):
    """Outcome taxonomy of a proxied upstream call."""
    OK = "ok"
    NOT_FOUND = "not_found"
    ENDPOINT_UNAVAILABLE = "endpoint_unavailable"
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    NETWORK_UNREACHABLE = "network_unreachable"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    NOT_PERMITTED = "not_permitted"
    UNKNOWN_ERROR = "unknown_error"


class DataSource(Enum):
    """Provenance of a result."""
    PRIMARY = "primary"
    LEGACY = "legacy"
    FALLBACK_DERIVED = "fallback_derived"
    STATUS_FALLBACK = "status_fallback"


class FallbackReason(Enum):
    """Why a block list was derived instead of read from /blocks."""
    BLOCKS_404 = "blocks_404"
    BLOCKS_ERROR = "blocks_error"
    BLOCKS_EMPTY = "blocks_empty"


class LookupKind(Enum):
    """Outcome of an entity lookup."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class ResolutionKind(Enum):
    """Outcome of a search resolution."""
    REDIRECT = "redirect"
    NOT_FOUND = "not_found"


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _list(value: Optional[tuple]) -> Optional[list]:
    return list(value) if value is not None else None


# ─────────────────────────────────────────────────────────────
# Ledger records
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InclusionRef:
    """Where a transaction was included."""
    block_hash: Optional[str] = None
    round_id: Optional[str] = None
    position: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "block_hash": self.block_hash,
            "round_id": self.round_id,
            "position": self.position,
        }


@dataclass(frozen=True)
class Transaction:
    """Normalized transaction."""
    id: str
    status: TxStatus = TxStatus.UNKNOWN
    status_raw: Optional[str] = field(default=None, compare=False)
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[Decimal] = None
    amount_atomic: Optional[str] = None
    fee: Optional[Decimal] = None
    included_in: Optional[InclusionRef] = None
    rejection_reason: Optional[str] = None
    first_seen_ms: Optional[int] = None
    tx_type: Optional[str] = None
    hashtimer: Optional[str] = None

    @property
    def first_seen_iso(self) -> Optional[str]:
        return millis_to_iso(self.first_seen_ms)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "status": self.status.value,
            "status_raw": self.status_raw,
            "from": self.from_address,
            "to": self.to_address,
            "amount": _decimal_str(self.amount),
            "amount_atomic": self.amount_atomic,
            "fee": _decimal_str(self.fee),
            "included_in": self.included_in.to_dict() if self.included_in else None,
            "rejection_reason": self.rejection_reason,
            "first_seen_ms": self.first_seen_ms,
            "first_seen_iso": self.first_seen_iso,
            "type": self.tx_type,
            "hashtimer": self.hashtimer,
        }

    def to_raw(self) -> dict[str, Any]:
        """Re-encode under primary upstream field names."""
        included = self.included_in or InclusionRef()
        return encode_primary("transaction", {
            "id": self.id,
            "status": self.status.value,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "amount": _decimal_str(self.amount),
            "amount_atomic": self.amount_atomic,
            "fee": _decimal_str(self.fee),
            "block_hash": included.block_hash,
            "round_id": included.round_id,
            "position": included.position,
            "rejection_reason": self.rejection_reason,
            "first_seen_ms": self.first_seen_ms,
            "tx_type": self.tx_type,
            "hashtimer": self.hashtimer,
        })


@dataclass(frozen=True)
class Block:
    """Normalized block. Only `hash` is guaranteed."""
    hash: str
    height: Optional[int] = None
    round_id: Optional[str] = None
    parent_hashes: Optional[tuple[str, ...]] = None
    transaction_count: Optional[int] = None
    tx_ids: Optional[tuple[str, ...]] = None
    timestamp_ms: Optional[int] = None
    proposer: Optional[str] = None
    hashtimer: Optional[str] = None

    @property
    def timestamp_iso(self) -> Optional[str]:
        return millis_to_iso(self.timestamp_ms)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "hash": self.hash,
            "height": self.height,
            "round_id": self.round_id,
            "parent_hashes": _list(self.parent_hashes),
            "transaction_count": self.transaction_count,
            "tx_ids": _list(self.tx_ids),
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": self.timestamp_iso,
            "proposer": self.proposer,
            "hashtimer": self.hashtimer,
        }

    def to_raw(self) -> dict[str, Any]:
        """Re-encode under primary upstream field names."""
        return encode_primary("block", {
            "hash": self.hash,
            "height": self.height,
            "round_id": self.round_id,
            "parent_hashes": _list(self.parent_hashes),
            "transaction_count": self.transaction_count,
            "tx_ids": _list(self.tx_ids),
            "timestamp_ms": self.timestamp_ms,
            "proposer": self.proposer,
            "hashtimer": self.hashtimer,
        })


@dataclass(frozen=True)
class Round:
    """
    Normalized consensus round.

    Counts fall back to the length of the matching list when the upstream
    does not report them; both stay None when neither is reported.
    """
    id: str
    hash: Optional[str] = None
    previous_hash: Optional[str] = None
    included_block_hashes: Optional[tuple[str, ...]] = None
    ordered_transaction_ids: Optional[tuple[str, ...]] = None
    block_count: Optional[int] = None
    tx_count: Optional[int] = None
    finalized: Optional[bool] = None
    finality_ms: Optional[int] = None
    hashtimer: Optional[str] = None
    start_hashtimer: Optional[str] = None
    end_hashtimer: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "hash": self.hash,
            "previous_hash": self.previous_hash,
            "included_block_hashes": _list(self.included_block_hashes),
            "ordered_transaction_ids": _list(self.ordered_transaction_ids),
            "block_count": self.block_count,
            "tx_count": self.tx_count,
            "finalized": self.finalized,
            "finality_ms": self.finality_ms,
            "hashtimer": self.hashtimer,
            "start_hashtimer": self.start_hashtimer,
            "end_hashtimer": self.end_hashtimer,
        }

    def to_raw(self) -> dict[str, Any]:
        """Re-encode under primary upstream field names."""
        return encode_primary("round", {
            "id": self.id,
            "hash": self.hash,
            "previous_hash": self.previous_hash,
            "included_block_hashes": _list(self.included_block_hashes),
            "ordered_transaction_ids": _list(self.ordered_transaction_ids),
            "block_count": self.block_count,
            "tx_count": self.tx_count,
            "finalized": self.finalized,
            "finality_ms": self.finality_ms,
            "hashtimer": self.hashtimer,
            "start_hashtimer": self.start_hashtimer,
            "end_hashtimer": self.end_hashtimer,
        })


@dataclass(frozen=True)
class Account:
    """Normalized account summary."""
    address: str
    balance: Optional[Decimal] = None
    balance_atomic: Optional[str] = None
    nonce: Optional[int] = None
    handles: Optional[tuple[str, ...]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "balance": _decimal_str(self.balance),
            "balance_atomic": self.balance_atomic,
            "nonce": self.nonce,
            "handles": _list(self.handles),
        }

    def to_raw(self) -> dict[str, Any]:
        return encode_primary("account", {
            "address": self.address,
            "balance": _decimal_str(self.balance),
            "balance_atomic": self.balance_atomic,
            "nonce": self.nonce,
            "handles": _list(self.handles),
        })


@dataclass(frozen=True)
class Handle:
    """Human-readable name record."""
    name: str
    owner: Optional[str] = None
    expires_at: Optional[str] = None
    hashtimer: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "owner": self.owner,
            "expires_at": self.expires_at,
            "hashtimer": self.hashtimer,
        }

    def to_raw(self) -> dict[str, Any]:
        return encode_primary("handle", self.to_dict())


@dataclass(frozen=True)
class FileDescriptor:
    """
    File metadata record.

    content_hash is passed through for an external file layer to verify;
    file bytes are never fetched here.
    """
    id: str
    owner: Optional[str] = None
    content_hash: Optional[str] = None
    size_bytes: Optional[int] = None
    mime_type: Optional[str] = None
    created_at: Optional[str] = None
    availability: Optional[str] = None
    dht_published: Optional[bool] = None
    tags: tuple[str, ...] = ()
    hashtimer: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "content_hash": self.content_hash,
            "size_bytes": self.size_bytes,
            "mime_type": self.mime_type,
            "created_at": self.created_at,
            "availability": self.availability,
            "dht_published": self.dht_published,
            "tags": list(self.tags),
            "hashtimer": self.hashtimer,
        }

    def to_raw(self) -> dict[str, Any]:
        return encode_primary("file", self.to_dict())


@dataclass(frozen=True)
class Peer:
    """Network peer."""
    id: str
    address: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "address": self.address}

    def to_raw(self) -> dict[str, Any]:
        return encode_primary("peer", self.to_dict())


@dataclass(frozen=True)
class StatusSnapshot:
    """Node/network status as reported by /status."""
    node_id: Optional[str] = None
    version: Optional[str] = None
    status: Optional[str] = None
    peer_count: Optional[int] = None
    mempool_size: Optional[int] = None
    uptime_seconds: Optional[int] = None
    round_id: Optional[str] = None
    block_height: Optional[int] = None
    head_hashtimer: Optional[str] = None
    head_time_ms: Optional[int] = None
    finalized: Optional[bool] = None
    validator_ids: Optional[tuple[str, ...]] = None
    validator_count: Optional[int] = None
    network_active: Optional[bool] = None

    @property
    def head_time_iso(self) -> Optional[str]:
        return millis_to_iso(self.head_time_ms)

    def to_dict(self) -> dict[str, Any]:
        data = self._values()
        data["head_time_iso"] = self.head_time_iso
        return data

    def to_raw(self) -> dict[str, Any]:
        return encode_primary("status", self._values())

    def _values(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "version": self.version,
            "status": self.status,
            "peer_count": self.peer_count,
            "mempool_size": self.mempool_size,
            "uptime_seconds": self.uptime_seconds,
            "round_id": self.round_id,
            "block_height": self.block_height,
            "head_hashtimer": self.head_hashtimer,
            "head_time_ms": self.head_time_ms,
            "finalized": self.finalized,
            "validator_ids": _list(self.validator_ids),
            "validator_count": self.validator_count,
            "network_active": self.network_active,
        }


@dataclass(frozen=True)
class TimeAnchor:
    """HashTimer (time-ordering anchor) detail."""
    id: str
    time_ms: Optional[int] = None
    round_height: Optional[int] = None
    block_height: Optional[int] = None
    tx_ids: Optional[tuple[str, ...]] = None

    @property
    def time_iso(self) -> Optional[str]:
        return millis_to_iso(self.time_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "time_ms": self.time_ms,
            "time_iso": self.time_iso,
            "round_height": self.round_height,
            "block_height": self.block_height,
            "tx_ids": _list(self.tx_ids),
        }

    def to_raw(self) -> dict[str, Any]:
        return encode_primary("time_anchor", {
            "id": self.id,
            "time_ms": self.time_ms,
            "round_height": self.round_height,
            "block_height": self.block_height,
            "tx_ids": _list(self.tx_ids),
        })


# ─────────────────────────────────────────────────────────────
# Result types
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GatewayResult:
    """Uniform outcome of every proxied upstream call."""
    ok: bool
    data: Any
    error_kind: ErrorKind
    rpc_base: str
    path: str
    http_status: Optional[int] = None
    detail: Optional[str] = None
    fetched_via: DataSource = DataSource.PRIMARY
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_not_found(self) -> bool:
        return self.error_kind == ErrorKind.NOT_FOUND

    @property
    def is_success_status(self) -> bool:
        """True when the upstream answered with a 2xx status."""
        return self.http_status is not None and 200 <= self.http_status < 300

    def with_source(self, source: DataSource) -> "GatewayResult":
        return replace(self, fetched_via=source)

    def to_error_payload(self) -> dict[str, Any]:
        """Stable error shape for the presentation layer."""
        return {
            "ok": False,
            "error_kind": self.error_kind.value,
            "detail": self.detail,
            "rpc_base": self.rpc_base,
            "path": self.path,
            "http_status": self.http_status,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if not self.ok:
            payload = self.to_error_payload()
            payload["fetched_via"] = self.fetched_via.value
            return payload
        return {
            "ok": True,
            "data": self.data,
            "error_kind": self.error_kind.value,
            "rpc_base": self.rpc_base,
            "path": self.path,
            "http_status": self.http_status,
            "fetched_via": self.fetched_via.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class EntityLookup(Generic[T]):
    """A canonical record, a typed not-found, or a typed error."""
    kind: LookupKind
    record: Optional[T] = None
    source: DataSource = DataSource.PRIMARY
    error: Optional[GatewayResult] = None
    not_found_reason: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.kind == LookupKind.FOUND

    @classmethod
    def of(cls, record: T, source: DataSource = DataSource.PRIMARY) -> "EntityLookup[T]":
        return cls(kind=LookupKind.FOUND, record=record, source=source)

    @classmethod
    def missing(cls, reason: str) -> "EntityLookup[T]":
        return cls(kind=LookupKind.NOT_FOUND, not_found_reason=reason)

    @classmethod
    def failed(cls, result: GatewayResult) -> "EntityLookup[T]":
        return cls(kind=LookupKind.ERROR, error=result, source=result.fetched_via)

    def to_dict(self) -> dict[str, Any]:
        record: Any = self.record
        if isinstance(record, (list, tuple)):
            record = [item.to_dict() for item in record]
        elif record is not None:
            record = record.to_dict()
        return {
            "kind": self.kind.value,
            "record": record,
            "source": self.source.value,
            "error": self.error.to_error_payload() if self.error else None,
            "not_found_reason": self.not_found_reason,
        }


@dataclass(frozen=True)
class BlockListing:
    """Recent blocks plus provenance of how they were obtained."""
    ok: bool
    blocks: tuple[Block, ...]
    source: DataSource
    limit_requested: int
    fallback_reason: Optional[FallbackReason] = None
    derived_block_hashes_count: int = 0
    hydrated_blocks_count: int = 0
    blocks_failed: int = 0
    txs_scanned: Optional[int] = None
    primary_status: Optional[int] = None
    warnings: tuple[str, ...] = ()
    error: Optional[GatewayResult] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "blocks": [block.to_dict() for block in self.blocks],
            "source": self.source.value,
            "fallback_reason": self.fallback_reason.value if self.fallback_reason else None,
            "derived_block_hashes_count": self.derived_block_hashes_count,
            "hydrated_blocks_count": self.hydrated_blocks_count,
            "meta": {
                "limit_requested": self.limit_requested,
                "primary_endpoint_status": self.primary_status,
                "txs_scanned": self.txs_scanned,
                "blocks_failed": self.blocks_failed,
            },
            "warnings": list(self.warnings),
            "error": self.error.to_error_payload() if self.error else None,
        }


@dataclass(frozen=True)
class DashboardSummary:
    """Independently fetched dashboard sections; each may fail on its own."""
    status: EntityLookup[StatusSnapshot]
    peers: EntityLookup[list[Peer]]
    recent_transactions: EntityLookup[list[Transaction]]

    @property
    def fully_available(self) -> bool:
        return self.status.found and self.peers.found and self.recent_transactions.found

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.to_dict(),
            "peers": self.peers.to_dict(),
            "recent_transactions": self.recent_transactions.to_dict(),
            "fully_available": self.fully_available,
        }


@dataclass(frozen=True)
class SearchResolution:
    """Either a redirect to a confirmed entity or a structured not-found."""
    kind: ResolutionKind
    normalized: str
    route: Optional[str] = None
    reason: Optional[str] = None
    guidance: tuple[str, ...] = ()

    @property
    def is_redirect(self) -> bool:
        return self.kind == ResolutionKind.REDIRECT

    @classmethod
    def redirect(cls, route: str, normalized: str) -> "SearchResolution":
        return cls(kind=ResolutionKind.REDIRECT, normalized=normalized, route=route)

    @classmethod
    def not_found(
        cls,
        reason: str,
        normalized: str,
        guidance: tuple[str, ...] = (),
    ) -> "SearchResolution":
        return cls(
            kind=ResolutionKind.NOT_FOUND,
            normalized=normalized,
            reason=reason,
            guidance=guidance,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "to": self.route,
            "reason": self.reason,
            "normalized": self.normalized,
            "guidance": list(self.guidance),
        }


# ─────────────────────────────────────────────────────────────
# Gateway health
# ─────────────────────────────────────────────────────────────

class GatewayStatus(Enum):
    """Health status of the upstream gateway as seen by the proxy."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass
class GatewayHealth:
    """Running health counters of a GatewayProxy."""
    status: GatewayStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0

    def is_healthy(self) -> bool:
        return self.status == GatewayStatus.HEALTHY

    def is_usable(self) -> bool:
        return self.status in (GatewayStatus.HEALTHY, GatewayStatus.DEGRADED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "requests_total": self.requests_total,
        }


@dataclass
class GatewayIncident:
    """Record of a failed upstream call."""
    error_kind: ErrorKind
    path: str
    timestamp: datetime
    error_message: str
    http_status: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error_kind": self.error_kind.value,
            "path": self.path,
            "timestamp": self.timestamp.isoformat(),
            "error_message": self.error_message,
            "http_status": self.http_status,
        }
