"""
Explorer RPC Package - Normalization and entity resolution for an IPPAN explorer.

Sits between explorer pages and an IPPAN node's RPC API. Upstream payloads
are inconsistent (field aliases, envelopes, optional fields, endpoints that
may not exist); everything leaving this package is a stable typed record or
a structured error. Nothing here ever fabricates data.

Features:
- Allowlisted gateway with per-endpoint timeouts and error classification
- Alias-table driven normalization of every entity type
- Legacy endpoint fallback and transaction-derived recent blocks
- Universal search resolving a free-text query to an explorer route

Quick Start:
    from explorer_rpc import (
        EntityResolver,
        ExplorerService,
        GatewayConfig,
        GatewayProxy,
    )

    async def explore():
        async with GatewayProxy(GatewayConfig.load()) as gateway:
            resolution = await EntityResolver(gateway).resolve("#12034")
            print(resolution.route)          # /round/12034

            lookup = await ExplorerService(gateway).get_round("12034")
            if lookup.found:
                print(lookup.record.tx_count)

Normalized Records:
- Transaction, Block, Round, Account, Handle
- FileDescriptor, Peer, StatusSnapshot, TimeAnchor

Missing upstream values stay None; they are never replaced by zeros,
placeholder hashes or synthetic timestamps.
"""

from explorer_rpc.config import (
    DEFAULT_RPC_BASE,
    GatewayConfig,
    get_config,
    reset_config,
    set_config,
)
from explorer_rpc.envelope import Envelope, unwrap_envelope, unwrap_result
from explorer_rpc.exceptions import (
    AliasTableError,
    ConfigurationError,
    ExplorerRpcError,
    GatewayError,
    ProbeTableError,
)
from explorer_rpc.fields import FIELD_ALIASES, encode_primary, get_field
from explorer_rpc.gateway import GatewayProxy, classify_status
from explorer_rpc.models import (
    Account,
    Block,
    BlockListing,
    DashboardSummary,
    DataSource,
    EntityLookup,
    ErrorKind,
    FallbackReason,
    FileDescriptor,
    GatewayHealth,
    GatewayIncident,
    GatewayResult,
    GatewayStatus,
    Handle,
    InclusionRef,
    LookupKind,
    Peer,
    ResolutionKind,
    Round,
    SearchResolution,
    StatusSnapshot,
    TimeAnchor,
    Transaction,
    TxStatus,
)
from explorer_rpc.normalizer import (
    extract_list,
    find_list,
    normalize_account,
    normalize_block,
    normalize_blocks,
    normalize_file,
    normalize_files,
    normalize_handle,
    normalize_handles,
    normalize_peer,
    normalize_peers,
    normalize_round,
    normalize_status,
    normalize_status_snapshot,
    normalize_time_anchor,
    normalize_transaction,
    normalize_transactions,
)
from explorer_rpc.resolver import (
    EntityKind,
    EntityResolver,
    QueryCategory,
    classify_query,
)
from explorer_rpc.service import ExplorerService
from explorer_rpc.timeutil import millis_to_iso, to_millis


__version__ = "1.0.0"

__all__ = [
    # Config
    "DEFAULT_RPC_BASE",
    "GatewayConfig",
    "get_config",
    "set_config",
    "reset_config",

    # Gateway
    "GatewayProxy",
    "classify_status",
    "Envelope",
    "unwrap_envelope",
    "unwrap_result",

    # Models
    "Transaction",
    "InclusionRef",
    "Block",
    "Round",
    "Account",
    "Handle",
    "FileDescriptor",
    "Peer",
    "StatusSnapshot",
    "TimeAnchor",
    "TxStatus",
    "ErrorKind",
    "DataSource",
    "FallbackReason",
    "LookupKind",
    "ResolutionKind",
    "GatewayResult",
    "GatewayHealth",
    "GatewayIncident",
    "GatewayStatus",
    "EntityLookup",
    "BlockListing",
    "DashboardSummary",
    "SearchResolution",

    # Normalization
    "FIELD_ALIASES",
    "get_field",
    "encode_primary",
    "to_millis",
    "millis_to_iso",
    "extract_list",
    "find_list",
    "normalize_status",
    "normalize_transaction",
    "normalize_transactions",
    "normalize_block",
    "normalize_blocks",
    "normalize_round",
    "normalize_account",
    "normalize_handle",
    "normalize_handles",
    "normalize_file",
    "normalize_files",
    "normalize_peer",
    "normalize_peers",
    "normalize_status_snapshot",
    "normalize_time_anchor",

    # Service / search
    "ExplorerService",
    "EntityResolver",
    "EntityKind",
    "QueryCategory",
    "classify_query",

    # Exceptions
    "ExplorerRpcError",
    "GatewayError",
    "ConfigurationError",
    "AliasTableError",
    "ProbeTableError",
]
