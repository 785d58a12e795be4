"""
Field Alias Table - Ordered candidate keys per logical field.

Upstream builds rename fields freely. Each logical field of each entity maps
to an ordered tuple of candidate keys; the first one that is present and
coerces to the wanted type wins. Dotted aliases reach into nested objects
(`header.prev_block_hash`). The first alias of every field is its primary
name, used when re-encoding a record.

Adding a new upstream alias is a one-line change to FIELD_ALIASES.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional

from explorer_rpc.exceptions import AliasTableError
from explorer_rpc.timeutil import to_millis


FIELD_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    "transaction": {
        "id": ("tx_id", "hash", "tx_hash", "id"),
        "status": ("status_v2", "status"),
        "from_address": ("from", "sender", "from_address"),
        "to_address": ("to", "recipient", "to_address"),
        "amount": ("amount", "value"),
        "amount_atomic": ("amount_atomic", "amountAtomic"),
        "fee": ("fee",),
        "block_hash": ("included.block_hash", "block_hash", "block_id", "blockId"),
        "round_id": ("included.round_id", "round_id", "round"),
        "position": ("included.position", "position", "tx_index"),
        "rejection_reason": ("rejected_reason", "rejection_reason", "error"),
        "first_seen_ms": (
            "first_seen_ms", "ippan_time_ms", "ippan_time_us", "timestamp", "created_at",
        ),
        "tx_type": ("type", "tx_type", "kind"),
        "hashtimer": ("hash_timer_id", "hashtimer", "hashTimer"),
    },
    "block": {
        "hash": ("block_hash", "hash", "header.block_hash", "id"),
        "height": ("height", "block_height", "header.height"),
        "round_id": ("round_id", "header.round_id", "round"),
        "parent_hashes": ("parent_hashes", "parents", "header.parent_ids"),
        "parent_hash": ("prev_block_hash", "header.prev_block_hash", "parent_hash"),
        "transaction_count": ("tx_count", "txCount", "transaction_count"),
        "tx_ids": ("tx_ids", "header.tx_ids"),
        "transactions": ("transactions", "txs"),
        "timestamp_ms": (
            "ippan_time_ms", "header.ippan_time_ms", "ippan_time_us",
            "header.ippan_time_us", "timestamp", "header.timestamp",
        ),
        "proposer": ("proposer", "header.proposer", "validator", "producer"),
        "hashtimer": ("hash_timer_id", "header.hash_timer_id", "hashtimer", "hashTimer"),
    },
    "round": {
        "id": ("round_id", "id", "height", "round_height", "round"),
        "hash": ("round_hash", "hash"),
        "previous_hash": ("prev_round_hash", "previous_hash", "parent_round_hash"),
        "included_block_hashes": ("included_blocks", "blocks", "block_hashes"),
        "ordered_transaction_ids": ("ordered_tx_ids", "tx_ids"),
        "block_count": ("block_count", "blocks_count"),
        "tx_count": ("tx_count", "txs_count"),
        "finalized": ("finalized", "is_finalized"),
        "finality_ms": ("finality_ms", "finality_time_ms"),
        "hashtimer": ("round_hashtimer", "hash_timer_id", "hashtimer"),
        "start_hashtimer": ("start_hash_timer_id", "start_hashtimer"),
        "end_hashtimer": ("end_hash_timer_id", "end_hashtimer"),
    },
    "account": {
        "address": ("address", "account", "id"),
        "balance": ("balance", "balance_ipn"),
        "balance_atomic": ("balance_atomic", "balanceAtomic"),
        "nonce": ("nonce",),
        "handles": ("handles",),
    },
    "handle": {
        "name": ("handle", "name"),
        "owner": ("owner", "address"),
        "expires_at": ("expires_at", "expiresAt"),
        "hashtimer": ("hash_timer_id", "hashTimerId", "hashtimer"),
    },
    "file": {
        "id": ("id", "file_id", "fileId"),
        "owner": ("owner", "address"),
        "content_hash": ("content_hash", "contentHash"),
        "size_bytes": ("size_bytes", "size"),
        "mime_type": ("mime_type", "mimeType"),
        "created_at": ("created_at", "createdAt"),
        "availability": ("availability",),
        "dht_published": ("dht_published", "dhtPublished"),
        "tags": ("tags",),
        "hashtimer": ("hash_timer_id", "hashtimer"),
    },
    "peer": {
        "id": ("peer_id", "id"),
        "address": ("address", "addr", "multiaddr"),
    },
    "status": {
        "node_id": ("node_id", "consensus.self_id", "id"),
        "version": ("version",),
        "status": ("status",),
        "peer_count": ("peer_count", "peers_count"),
        "mempool_size": ("mempool_size",),
        "uptime_seconds": ("uptime_seconds", "uptime"),
        "round_id": ("consensus.round", "head.round_id", "head.round_height", "round_id"),
        "block_height": ("head.block_height", "block_height"),
        "head_hashtimer": ("head.hash_timer_seq", "head.hash_timer_id", "hash_timer_id"),
        "head_time_ms": ("head.ippan_time_ms", "head.ippan_time_us", "ippan_time_ms"),
        "finalized": ("head.finalized",),
        "validator_ids": ("consensus.validator_ids", "validator_ids"),
        "validator_count": (
            "consensus.validator_count", "live.validators_online", "live.active_operators",
        ),
        "network_active": ("network_active",),
    },
    "time_anchor": {
        "id": ("hash_timer_id", "id", "hashtimer"),
        "time_ms": ("ippan_time_ms", "ippan_time_us", "ippan_time"),
        "round_height": ("round_height", "round_id"),
        "block_height": ("block_height",),
        "tx_ids": ("tx_ids",),
    },
}


def validate_alias_table(table: Mapping[str, Mapping[str, tuple[str, ...]]]) -> None:
    """
    Check the shape of an alias table.

    Raises:
        AliasTableError: On the first malformed entry found
    """
    if not isinstance(table, Mapping) or not table:
        raise AliasTableError("Alias table must be a non-empty mapping")

    for entity, fields in table.items():
        if not isinstance(entity, str) or not entity:
            raise AliasTableError(f"Invalid entity name: {entity!r}")
        if not isinstance(fields, Mapping) or not fields:
            raise AliasTableError("Entity has no fields", entity=entity)

        for field_name, aliases in fields.items():
            if not isinstance(aliases, tuple) or not aliases:
                raise AliasTableError(
                    "Aliases must be a non-empty tuple",
                    entity=entity,
                    field_name=field_name,
                )
            if len(set(aliases)) != len(aliases):
                raise AliasTableError(
                    "Duplicate alias",
                    entity=entity,
                    field_name=field_name,
                    context={"aliases": list(aliases)},
                )
            for alias in aliases:
                if not isinstance(alias, str) or not all(alias.split(".")):
                    raise AliasTableError(
                        f"Malformed alias: {alias!r}",
                        entity=entity,
                        field_name=field_name,
                    )


validate_alias_table(FIELD_ALIASES)


# ─────────────────────────────────────────────────────────────
# Coercions
# ─────────────────────────────────────────────────────────────
# Each returns the coerced value, or None when the candidate is unusable so
# that the accessor moves on to the next alias.

def as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def as_ident(value: Any) -> Optional[str]:
    """Identifier given as a string or an integer."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    return as_text(value)


def as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    return None


def as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return None


def as_decimal(value: Any) -> Optional[Decimal]:
    """Decimal from a number (via its string form) or a numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


def as_atomic(value: Any) -> Optional[str]:
    """Atomic amount as an integer string."""
    number = as_int(value)
    return str(number) if number is not None else None


def as_list(value: Any) -> Optional[list]:
    return value if isinstance(value, list) else None


def as_str_tuple(value: Any) -> Optional[tuple[str, ...]]:
    """A list whose items are all strings."""
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    return None


def as_millis(value: Any) -> Optional[int]:
    return to_millis(value)


# ─────────────────────────────────────────────────────────────
# Accessors
# ─────────────────────────────────────────────────────────────

_MISSING = object()


def lookup_path(raw: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; _MISSING if absent."""
    current = raw
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def first_present(
    raw: Any,
    aliases: tuple[str, ...],
    coerce: Callable[[Any], Any],
) -> Any:
    """Value of the first alias that is present, non-null and coercible."""
    for alias in aliases:
        value = lookup_path(raw, alias)
        if value is _MISSING or value is None:
            continue
        coerced = coerce(value)
        if coerced is not None:
            return coerced
    return None


def get_field(
    raw: Any,
    entity: str,
    field_name: str,
    coerce: Callable[[Any], Any] = as_text,
) -> Any:
    """First-present lookup of a logical field through FIELD_ALIASES."""
    return first_present(raw, FIELD_ALIASES[entity][field_name], coerce)


def primary_name(entity: str, field_name: str) -> str:
    return FIELD_ALIASES[entity][field_name][0]


def encode_primary(entity: str, values: Mapping[str, Any]) -> dict[str, Any]:
    """
    Build a raw upstream-shaped dict from logical field values.

    Each non-None value is written under its field's primary alias; dotted
    primaries are re-nested.
    """
    fields = FIELD_ALIASES.get(entity)
    if fields is None:
        raise AliasTableError("Unknown entity", entity=entity)

    raw: dict[str, Any] = {}
    for field_name, value in values.items():
        if value is None:
            continue
        if field_name not in fields:
            raise AliasTableError("Unknown field", entity=entity, field_name=field_name)
        *parents, leaf = fields[field_name][0].split(".")
        target = raw
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = value
    return raw
