"""
Schema Normalizer - Raw upstream JSON to canonical records.

================================================================================
RESPONSIBILITY
================================================================================
Given a decoded JSON value and a fallback identifier, produce exactly one
canonical record. Normalizers are pure and total: missing, renamed or
mistyped fields leave the canonical field as None, and no input raises.

Field names are resolved through FIELD_ALIASES (see fields.py); this module
only adds the per-entity derivations (counts from list lengths, inclusion
references, peer synthesis) on top of the first-present lookups.
================================================================================
"""

import logging
import re
from typing import Any, Iterable, Mapping, Optional

from explorer_rpc.fields import (
    as_atomic,
    as_bool,
    as_decimal,
    as_ident,
    as_int,
    as_list,
    as_millis,
    as_str_tuple,
    as_text,
    get_field,
    lookup_path,
)
from explorer_rpc.models import (
    Account,
    Block,
    FileDescriptor,
    Handle,
    InclusionRef,
    Peer,
    Round,
    StatusSnapshot,
    TimeAnchor,
    Transaction,
    TxStatus,
)


logger = logging.getLogger(__name__)


STATUS_SYNONYMS: dict[str, TxStatus] = {
    "pending": TxStatus.MEMPOOL,
    "submitted": TxStatus.MEMPOOL,
    "mempool": TxStatus.MEMPOOL,
    "in_block": TxStatus.INCLUDED,
    "included": TxStatus.INCLUDED,
    "confirmed": TxStatus.FINALIZED,
    "final": TxStatus.FINALIZED,
    "finalized": TxStatus.FINALIZED,
    "failed": TxStatus.REJECTED,
    "invalid": TxStatus.REJECTED,
    "rejected": TxStatus.REJECTED,
    "expired": TxStatus.PRUNED,
    "dropped": TxStatus.PRUNED,
    "pruned": TxStatus.PRUNED,
}

# Container keys probed by extract_list, in order.
LIST_CONTAINER_KEYS: tuple[str, ...] = ("items", "data", "blocks", "txs", "data.data")

_URL_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


def normalize_status(value: Any) -> TxStatus:
    """
    Map an upstream status label onto TxStatus.

    Case and surrounding whitespace are ignored; unknown labels and
    non-string input map to UNKNOWN. Idempotent: a TxStatus (or its value)
    maps to itself.
    """
    if isinstance(value, TxStatus):
        return value
    if not isinstance(value, str):
        return TxStatus.UNKNOWN
    return STATUS_SYNONYMS.get(value.strip().lower(), TxStatus.UNKNOWN)


def find_list(raw: Any, extra_keys: Iterable[str] = ()) -> Optional[list]:
    """
    Find the list inside a list-shaped response.

    Checks a bare array first, then each container key (`items`, `data`,
    `blocks`, `txs`, `data.data`, then any extra keys). The first array
    found wins. None means the response is not list-shaped at all.
    """
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, Mapping):
        return None
    for key in (*LIST_CONTAINER_KEYS, *extra_keys):
        value = as_list(lookup_path(raw, key))
        if value is not None:
            return value
    return None


def extract_list(raw: Any, extra_keys: Iterable[str] = ()) -> list:
    """Like find_list, but a response with no list gives an empty list."""
    found = find_list(raw, extra_keys)
    return found if found is not None else []


def _unwrap_single(raw: Any, *keys: str) -> Any:
    """Unwrap `{"tx": {...}}`-style single-entity envelopes."""
    if isinstance(raw, Mapping):
        for key in keys:
            inner = raw.get(key)
            if isinstance(inner, Mapping):
                return inner
    return raw


def _ids_from_items(
    items: Optional[list],
    entity: str,
    field_name: str = "id",
) -> Optional[tuple[str, ...]]:
    """Ids from a list of strings or objects; None when there is no list."""
    if items is None:
        return None
    ids = []
    for item in items:
        if isinstance(item, str) and item.strip():
            ids.append(item.strip())
        elif isinstance(item, Mapping):
            item_id = get_field(item, entity, field_name, as_ident)
            if item_id is not None:
                ids.append(item_id)
    return tuple(ids)


# ─────────────────────────────────────────────────────────────
# Ledger entities
# ─────────────────────────────────────────────────────────────

def normalize_transaction(raw: Any, fallback_id: str = "") -> Transaction:
    """Normalize a transaction payload (flat or wrapped in `tx`)."""
    data = _unwrap_single(raw, "tx", "transaction")
    if not isinstance(data, Mapping):
        return Transaction(id=fallback_id)

    status_raw = get_field(data, "transaction", "status", as_text)

    inclusion = InclusionRef(
        block_hash=get_field(data, "transaction", "block_hash", as_ident),
        round_id=get_field(data, "transaction", "round_id", as_ident),
        position=get_field(data, "transaction", "position", as_int),
    )
    has_inclusion = any(
        value is not None
        for value in (inclusion.block_hash, inclusion.round_id, inclusion.position)
    )

    return Transaction(
        id=get_field(data, "transaction", "id", as_ident) or fallback_id,
        status=normalize_status(status_raw),
        status_raw=status_raw,
        from_address=get_field(data, "transaction", "from_address"),
        to_address=get_field(data, "transaction", "to_address"),
        amount=get_field(data, "transaction", "amount", as_decimal),
        amount_atomic=get_field(data, "transaction", "amount_atomic", as_atomic),
        fee=get_field(data, "transaction", "fee", as_decimal),
        included_in=inclusion if has_inclusion else None,
        rejection_reason=get_field(data, "transaction", "rejection_reason"),
        first_seen_ms=get_field(data, "transaction", "first_seen_ms", as_millis),
        tx_type=get_field(data, "transaction", "tx_type"),
        hashtimer=get_field(data, "transaction", "hashtimer"),
    )


def normalize_block(raw: Any, fallback_id: str = "") -> Block:
    """
    Normalize a block payload (flat, `header.*`, or wrapped in `block`).

    The transaction count is taken from an explicit count, else from the
    length of the tx id list (either `tx_ids` or ids of `transactions`).
    """
    data = _unwrap_single(raw, "block")
    if not isinstance(data, Mapping):
        return Block(hash=fallback_id)

    tx_ids = get_field(data, "block", "tx_ids", as_str_tuple)
    if tx_ids is None:
        tx_ids = _ids_from_items(get_field(data, "block", "transactions", as_list), "transaction")

    tx_count = get_field(data, "block", "transaction_count", as_int)
    if tx_count is None and tx_ids is not None:
        tx_count = len(tx_ids)

    parents = get_field(data, "block", "parent_hashes", as_str_tuple)
    if parents is None:
        parent = get_field(data, "block", "parent_hash")
        parents = (parent,) if parent else None

    return Block(
        hash=get_field(data, "block", "hash", as_ident) or fallback_id,
        height=get_field(data, "block", "height", as_int),
        round_id=get_field(data, "block", "round_id", as_ident),
        parent_hashes=parents,
        transaction_count=tx_count,
        tx_ids=tx_ids,
        timestamp_ms=get_field(data, "block", "timestamp_ms", as_millis),
        proposer=get_field(data, "block", "proposer"),
        hashtimer=get_field(data, "block", "hashtimer"),
    )


def normalize_round(raw: Any, fallback_id: str = "") -> Round:
    """Normalize a round payload; counts fall back to list lengths."""
    data = _unwrap_single(raw, "round")
    if not isinstance(data, Mapping):
        return Round(id=fallback_id)

    block_hashes = _ids_from_items(
        get_field(data, "round", "included_block_hashes", as_list), "block", "hash"
    )
    tx_ids = _ids_from_items(
        get_field(data, "round", "ordered_transaction_ids", as_list), "transaction"
    )

    block_count = get_field(data, "round", "block_count", as_int)
    if block_count is None and block_hashes is not None:
        block_count = len(block_hashes)
    tx_count = get_field(data, "round", "tx_count", as_int)
    if tx_count is None and tx_ids is not None:
        tx_count = len(tx_ids)

    return Round(
        id=get_field(data, "round", "id", as_ident) or fallback_id,
        hash=get_field(data, "round", "hash"),
        previous_hash=get_field(data, "round", "previous_hash"),
        included_block_hashes=block_hashes,
        ordered_transaction_ids=tx_ids,
        block_count=block_count,
        tx_count=tx_count,
        finalized=get_field(data, "round", "finalized", as_bool),
        finality_ms=get_field(data, "round", "finality_ms", as_int),
        hashtimer=get_field(data, "round", "hashtimer"),
        start_hashtimer=get_field(data, "round", "start_hashtimer"),
        end_hashtimer=get_field(data, "round", "end_hashtimer"),
    )


def normalize_account(raw: Any, fallback_id: str = "") -> Account:
    data = _unwrap_single(raw, "account")
    if not isinstance(data, Mapping):
        return Account(address=fallback_id)

    return Account(
        address=get_field(data, "account", "address", as_ident) or fallback_id,
        balance=get_field(data, "account", "balance", as_decimal),
        balance_atomic=get_field(data, "account", "balance_atomic", as_atomic),
        nonce=get_field(data, "account", "nonce", as_int),
        handles=get_field(data, "account", "handles", as_str_tuple),
    )


def normalize_handle(raw: Any, fallback_id: str = "") -> Handle:
    data = _unwrap_single(raw, "handle")
    if not isinstance(data, Mapping):
        return Handle(name=fallback_id)

    return Handle(
        name=get_field(data, "handle", "name") or fallback_id,
        owner=get_field(data, "handle", "owner"),
        expires_at=get_field(data, "handle", "expires_at", as_ident),
        hashtimer=get_field(data, "handle", "hashtimer"),
    )


def _as_availability(value: Any) -> Optional[str]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return as_text(value)


def normalize_file(raw: Any, fallback_id: str = "") -> FileDescriptor:
    """Normalize file metadata. Tags are kept only if every tag is a string."""
    data = _unwrap_single(raw, "file")
    if not isinstance(data, Mapping):
        return FileDescriptor(id=fallback_id)

    return FileDescriptor(
        id=get_field(data, "file", "id", as_ident) or fallback_id,
        owner=get_field(data, "file", "owner"),
        content_hash=get_field(data, "file", "content_hash"),
        size_bytes=get_field(data, "file", "size_bytes", as_int),
        mime_type=get_field(data, "file", "mime_type"),
        created_at=get_field(data, "file", "created_at", as_ident),
        availability=get_field(data, "file", "availability", _as_availability),
        dht_published=get_field(data, "file", "dht_published", as_bool),
        tags=get_field(data, "file", "tags", as_str_tuple) or (),
        hashtimer=get_field(data, "file", "hashtimer"),
    )


def normalize_peer(raw: Any, index: int = 0) -> Optional[Peer]:
    """
    Normalize one peer entry.

    Strings are addresses (scheme stripped). The id is synthesized as
    `peer-<index+1>` when absent. Returns None when no address is known.
    """
    synthetic_id = f"peer-{index + 1}"

    if isinstance(raw, str):
        address = _URL_SCHEME.sub("", raw.strip())
        return Peer(id=synthetic_id, address=address) if address else None

    if not isinstance(raw, Mapping):
        return None

    address = get_field(raw, "peer", "address")
    if address is None:
        return None
    return Peer(
        id=get_field(raw, "peer", "id", as_ident) or synthetic_id,
        address=address,
    )


def normalize_status_snapshot(raw: Any) -> StatusSnapshot:
    """Normalize a /status payload."""
    if not isinstance(raw, Mapping):
        return StatusSnapshot()

    validator_ids = get_field(raw, "status", "validator_ids", as_str_tuple)
    validator_count = get_field(raw, "status", "validator_count", as_int)
    if validator_count is None and validator_ids is not None:
        validator_count = len(validator_ids)

    peer_count = get_field(raw, "status", "peer_count", as_int)
    if peer_count is None and isinstance(raw.get("peers"), list):
        peer_count = len(raw["peers"])

    return StatusSnapshot(
        node_id=get_field(raw, "status", "node_id", as_ident),
        version=get_field(raw, "status", "version"),
        status=get_field(raw, "status", "status"),
        peer_count=peer_count,
        mempool_size=get_field(raw, "status", "mempool_size", as_int),
        uptime_seconds=get_field(raw, "status", "uptime_seconds", as_int),
        round_id=get_field(raw, "status", "round_id", as_ident),
        block_height=get_field(raw, "status", "block_height", as_int),
        head_hashtimer=get_field(raw, "status", "head_hashtimer"),
        head_time_ms=get_field(raw, "status", "head_time_ms", as_millis),
        finalized=get_field(raw, "status", "finalized", as_bool),
        validator_ids=validator_ids,
        validator_count=validator_count,
        network_active=get_field(raw, "status", "network_active", as_bool),
    )


def normalize_time_anchor(raw: Any, fallback_id: str = "") -> TimeAnchor:
    data = _unwrap_single(raw, "hashtimer", "hash_timer")
    if not isinstance(data, Mapping):
        return TimeAnchor(id=fallback_id)

    return TimeAnchor(
        id=get_field(data, "time_anchor", "id", as_ident) or fallback_id,
        time_ms=get_field(data, "time_anchor", "time_ms", as_millis),
        round_height=get_field(data, "time_anchor", "round_height", as_int),
        block_height=get_field(data, "time_anchor", "block_height", as_int),
        tx_ids=get_field(data, "time_anchor", "tx_ids", as_str_tuple),
    )


# ─────────────────────────────────────────────────────────────
# Lists
# ─────────────────────────────────────────────────────────────
# Entries that are not objects or carry no identifier are skipped.

def normalize_transactions(raw: Any) -> list[Transaction]:
    records = [
        normalize_transaction(item)
        for item in extract_list(raw, ("transactions",))
        if isinstance(item, Mapping)
    ]
    return _drop_anonymous(records, "id", "transaction")


def normalize_blocks(raw: Any) -> list[Block]:
    records = [
        normalize_block(item)
        for item in extract_list(raw)
        if isinstance(item, Mapping)
    ]
    return _drop_anonymous(records, "hash", "block")


def normalize_files(raw: Any) -> list[FileDescriptor]:
    records = [
        normalize_file(item)
        for item in extract_list(raw, ("files",))
        if isinstance(item, Mapping)
    ]
    return _drop_anonymous(records, "id", "file")


def normalize_handles(raw: Any) -> list[Handle]:
    records = [
        normalize_handle(item)
        for item in extract_list(raw, ("handles",))
        if isinstance(item, Mapping)
    ]
    return _drop_anonymous(records, "name", "handle")


def normalize_peers(raw: Any) -> list[Peer]:
    """Peers from a bare array, `peers` or `items`; entries without an address are dropped."""
    peers = []
    for index, item in enumerate(extract_list(raw, ("peers",))):
        peer = normalize_peer(item, index)
        if peer is not None:
            peers.append(peer)
    return peers


def _drop_anonymous(records: list, key: str, entity: str) -> list:
    kept = [record for record in records if getattr(record, key)]
    if len(kept) != len(records):
        logger.debug(f"[normalizer] Skipped {len(records) - len(kept)} {entity} entries without id")
    return kept
