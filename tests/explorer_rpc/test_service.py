"""
Tests for the Explorer Service.

============================================================
PURPOSE
============================================================
Entity lookups, list fallbacks and dashboard composition.

TEST PRINCIPLES:
- Absence is a typed not-found, failures are typed errors
- Derived data is always flagged with its provenance
- Missing upstream values are never fabricated

============================================================
"""

import pytest

from explorer_rpc.config import GatewayConfig
from explorer_rpc.gateway import GatewayProxy
from explorer_rpc.models import (
    DataSource,
    ErrorKind,
    FallbackReason,
    LookupKind,
    Peer,
    TxStatus,
)
from explorer_rpc.service import ExplorerService


TX_HASH = "0x" + "a" * 64
BLOCK_A = "1" * 64
BLOCK_B = "2" * 64
BLOCK_C = "3" * 64
MS = 1_700_000_000_000


@pytest.fixture
def service(gateway):
    return ExplorerService(gateway)


# ============================================================
# SINGLE ENTITIES
# ============================================================

class TestEntityLookups:
    """Test single-entity lookups."""

    @pytest.mark.asyncio
    async def test_transaction_found(self, fake_node, service):
        fake_node.add(f"/tx/{TX_HASH}", {
            "ok": True,
            "data": {"tx_hash": TX_HASH, "status_v2": "CONFIRMED"},
        })

        lookup = await service.get_transaction(TX_HASH)

        assert lookup.found
        assert lookup.record.id == TX_HASH
        assert lookup.record.status == TxStatus.FINALIZED
        assert lookup.source == DataSource.PRIMARY

    @pytest.mark.asyncio
    async def test_transaction_not_found(self, fake_node, service):
        lookup = await service.get_transaction(TX_HASH)
        assert lookup.kind == LookupKind.NOT_FOUND
        assert lookup.not_found_reason == "transaction_not_found"
        assert lookup.record is None

    @pytest.mark.asyncio
    async def test_not_found_with_binary_body(self, fake_node, service):
        """A 404 stays not-found whatever bytes the node sends with it."""
        fake_node.add(f"/tx/{TX_HASH}", raw=b"\xff\xfe\xfa not utf8", status=404)
        lookup = await service.get_transaction(TX_HASH)
        assert lookup.kind == LookupKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_envelope_not_found(self, fake_node, service):
        """A 200 whose envelope says not found is still absence."""
        fake_node.add(f"/tx/{TX_HASH}", {"ok": False, "error": "Transaction not found"})
        lookup = await service.get_transaction(TX_HASH)
        assert lookup.kind == LookupKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_envelope_failure(self, fake_node, service):
        fake_node.add(f"/tx/{TX_HASH}", {"ok": False, "error": "storage offline"})
        lookup = await service.get_transaction(TX_HASH)
        assert lookup.kind == LookupKind.ERROR
        assert lookup.error.error_kind == ErrorKind.UNKNOWN_ERROR
        assert lookup.error.detail == "storage offline"

    @pytest.mark.asyncio
    async def test_primitive_payload(self, fake_node, service):
        fake_node.add(f"/tx/{TX_HASH}", 42)
        lookup = await service.get_transaction(TX_HASH)
        assert lookup.kind == LookupKind.ERROR
        assert lookup.error.error_kind == ErrorKind.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_upstream_error(self, fake_node, service):
        fake_node.add("/round/12034", {}, status=502)
        lookup = await service.get_round("12034")
        assert lookup.kind == LookupKind.ERROR
        assert lookup.error.error_kind == ErrorKind.HTTP_5XX
        assert lookup.to_dict()["error"]["error_kind"] == "http_5xx"

    @pytest.mark.asyncio
    async def test_round(self, fake_node, service):
        fake_node.add("/round/12034", {"round": {"round_id": 12034, "included_blocks": [BLOCK_A]}})
        lookup = await service.get_round("12034")
        assert lookup.record.id == "12034"
        assert lookup.record.block_count == 1

    @pytest.mark.asyncio
    async def test_block_legacy_path(self, fake_node, service):
        fake_node.add(f"/blocks/{BLOCK_A}", {"block": {"hash": BLOCK_A, "height": 7}})
        lookup = await service.get_block(BLOCK_A)
        assert lookup.found
        assert lookup.record.height == 7
        assert lookup.source == DataSource.LEGACY

    @pytest.mark.asyncio
    async def test_block_fallback_id(self, fake_node, service):
        """A payload without a hash keeps the requested identifier."""
        fake_node.add("/block/42", {"height": 42})
        lookup = await service.get_block("42")
        assert lookup.record.hash == "42"

    @pytest.mark.asyncio
    async def test_account_primary_and_legacy(self, fake_node, service):
        address = "0x" + "f" * 40
        fake_node.add(f"/account/{address}", {"address": address, "balance": "3.5"})
        lookup = await service.get_account(address)
        assert lookup.found
        assert str(lookup.record.balance) == "3.5"
        assert fake_node.paths == [f"/accounts/{address}", f"/account/{address}"]

    @pytest.mark.asyncio
    async def test_status(self, fake_node, service):
        fake_node.add("/status", {"ok": True, "data": {"node_id": "n1", "consensus": {"round": 9}}})
        lookup = await service.get_status()
        assert lookup.record.node_id == "n1"
        assert lookup.record.round_id == "9"

    @pytest.mark.asyncio
    async def test_file_and_time_anchor(self, fake_node, service):
        fake_node.add("/files/f1", {"file": {"id": "f1", "size_bytes": 12}})
        fake_node.add(f"/hashtimers/{BLOCK_C}", {"hash_timer_id": BLOCK_C, "ippan_time_ms": MS})
        assert (await service.get_file("f1")).record.size_bytes == 12
        assert (await service.get_time_anchor(BLOCK_C)).record.time_ms == MS


class TestHandleLookup:
    """Test handle lookup fallbacks."""

    @pytest.mark.asyncio
    async def test_direct(self, fake_node, service):
        fake_node.add("/handles/alice", {"handle": "@alice.ipn", "owner": "0x1"})
        lookup = await service.get_handle("alice")
        assert lookup.record.name == "@alice.ipn"
        assert fake_node.paths == ["/handles/alice"]

    @pytest.mark.asyncio
    async def test_query_spelling(self, fake_node, service):
        fake_node.add("/handles?query=alice", {"handles": [{"handle": "@alice.ipn"}]})
        lookup = await service.get_handle("alice")
        assert lookup.found
        assert lookup.record.name == "@alice.ipn"

    @pytest.mark.asyncio
    async def test_empty_match_list_continues(self, fake_node, service):
        fake_node.add("/handles?query=alice", {"handles": []})
        fake_node.add("/handles?handle=alice", {"items": [{"name": "@alice.ipn"}]})
        lookup = await service.get_handle("alice")
        assert lookup.record.name == "@alice.ipn"
        assert len(fake_node.requests) == 3

    @pytest.mark.asyncio
    async def test_empty_items_container_is_a_miss(self, fake_node, service):
        """An empty list under any container key is no match, not a hit."""
        fake_node.add("/handles?query=ghost", {"items": [], "total": 0})
        lookup = await service.get_handle("ghost")
        assert lookup.kind == LookupKind.NOT_FOUND
        assert lookup.record is None
        assert len(fake_node.requests) == 3

    @pytest.mark.asyncio
    async def test_object_without_handle_is_a_miss(self, fake_node, service):
        fake_node.add("/handles/ghost", {"total": 0})
        lookup = await service.get_handle("ghost")
        assert lookup.kind == LookupKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_all_missing(self, fake_node, service):
        lookup = await service.get_handle("alice")
        assert lookup.not_found_reason == "handle_not_found"
        assert len(fake_node.requests) == 3

    @pytest.mark.asyncio
    async def test_error_stops(self, fake_node, service):
        fake_node.add("/handles/alice", {}, status=500)
        lookup = await service.get_handle("alice")
        assert lookup.kind == LookupKind.ERROR
        assert fake_node.paths == ["/handles/alice"]


# ============================================================
# LISTS
# ============================================================

class TestLists:
    """Test list lookups and peer fallbacks."""

    @pytest.mark.asyncio
    async def test_recent_transactions_limit_clamped(self, fake_node, service):
        fake_node.add("/tx/recent?limit=200", {"txs": [{"tx_id": "a"}]})
        lookup = await service.get_recent_transactions(1000)
        assert [tx.id for tx in lookup.record] == ["a"]

    @pytest.mark.asyncio
    async def test_files_and_handles(self, fake_node, service):
        fake_node.add("/files?limit=100", {"files": [{"id": "f1"}]})
        fake_node.add("/handles?limit=5", [{"handle": "@a.ipn"}])
        assert [f.id for f in (await service.list_files()).record] == ["f1"]
        assert [h.name for h in (await service.list_handles(5)).record] == ["@a.ipn"]

    @pytest.mark.asyncio
    async def test_peers(self, fake_node, service):
        fake_node.add("/peers", {"peers": ["http://1.2.3.4:9000"]})
        lookup = await service.get_peers()
        assert lookup.record == [Peer(id="peer-1", address="1.2.3.4:9000")]
        assert lookup.source == DataSource.PRIMARY

    @pytest.mark.asyncio
    async def test_peers_from_status_list(self, fake_node, service):
        fake_node.add("/status", {"peers": [{"peer_id": "p1", "address": "5.6.7.8"}]})
        lookup = await service.get_peers()
        assert lookup.record == [Peer(id="p1", address="5.6.7.8")]
        assert lookup.source == DataSource.STATUS_FALLBACK

    @pytest.mark.asyncio
    async def test_validators_are_not_peers(self, fake_node, service):
        """Validator ids in /status never become peer records."""
        fake_node.add("/peers", {}, status=501)
        fake_node.add("/status", {"consensus": {"validator_ids": ["v1", "v2"]}})
        lookup = await service.get_peers()
        assert lookup.kind == LookupKind.ERROR
        assert lookup.record is None
        assert lookup.error.error_kind == ErrorKind.ENDPOINT_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_peers_unavailable(self, fake_node, service):
        fake_node.add("/status", {"node_id": "n1"})
        lookup = await service.get_peers()
        assert lookup.not_found_reason == "peers_not_found"

    @pytest.mark.asyncio
    async def test_peers_error(self, fake_node, service):
        fake_node.add("/peers", {}, status=500)
        fake_node.add("/status", {}, status=500)
        lookup = await service.get_peers()
        assert lookup.kind == LookupKind.ERROR
        assert lookup.error.error_kind == ErrorKind.HTTP_5XX


# ============================================================
# BLOCK LISTING
# ============================================================

def _recent_feed():
    return {"txs": [
        {"tx_id": "t1", "status": "included", "block_hash": BLOCK_A},
        {"tx_id": "t2", "status": "finalized", "included": {"block_hash": BLOCK_B}},
        {"tx_id": "t3", "status": "mempool", "block_hash": BLOCK_C},
        {"tx_id": "t4", "status": "confirmed", "block_hash": BLOCK_A},
        {"tx_id": "t5", "status": "finalized"},
    ]}


class TestListBlocks:
    """Test recent blocks with the tx-derived fallback."""

    @pytest.mark.parametrize("limit,expected", [
        (None, 25), ("abc", 25), (0, 1), (-3, 1), (5, 5), ("7", 7), (100, 25),
    ])
    def test_clamp(self, limit, expected):
        service = ExplorerService(GatewayProxy(GatewayConfig()))
        assert service.clamp_block_limit(limit) == expected

    @pytest.mark.asyncio
    async def test_primary(self, fake_node, service):
        fake_node.add("/blocks?limit=25", {"blocks": [{"hash": "h1"}, {"hash": "h2"}]})
        listing = await service.list_blocks()
        assert listing.ok
        assert listing.source == DataSource.PRIMARY
        assert listing.fallback_reason is None
        assert [block.hash for block in listing.blocks] == ["h1", "h2"]
        assert listing.warnings == ()

    @pytest.mark.asyncio
    async def test_derived_on_404(self, fake_node, service):
        """Unique included/finalized block hashes are hydrated, newest first."""
        fake_node.add("/tx/recent?limit=200", _recent_feed())
        fake_node.add(f"/block/{BLOCK_A}", {"hash": BLOCK_A, "ippan_time_ms": MS})
        fake_node.add(f"/block/{BLOCK_B}", {"hash": BLOCK_B, "ippan_time_ms": MS + 1000})

        listing = await service.list_blocks()

        assert listing.ok
        assert listing.source == DataSource.FALLBACK_DERIVED
        assert listing.fallback_reason == FallbackReason.BLOCKS_404
        assert listing.primary_status == 404
        assert [block.hash for block in listing.blocks] == [BLOCK_B, BLOCK_A]
        assert listing.derived_block_hashes_count == 2
        assert listing.hydrated_blocks_count == 2
        assert listing.blocks_failed == 0
        assert listing.txs_scanned == 5
        assert listing.warnings
        assert f"/block/{BLOCK_C}" not in fake_node.paths

    @pytest.mark.asyncio
    async def test_discovery_order_without_timestamps(self, fake_node, service):
        """Blocks without times keep discovery order and no invented time."""
        fake_node.add("/tx/recent?limit=200", _recent_feed())
        fake_node.add(f"/block/{BLOCK_A}", {"hash": BLOCK_A})
        fake_node.add(f"/block/{BLOCK_B}", {"hash": BLOCK_B, "ippan_time_ms": MS})

        listing = await service.list_blocks()

        assert [block.hash for block in listing.blocks] == [BLOCK_A, BLOCK_B]
        assert listing.blocks[0].timestamp_ms is None

    @pytest.mark.asyncio
    async def test_limit_caps_derived_hashes(self, fake_node, service):
        fake_node.add("/tx/recent?limit=200", _recent_feed())
        fake_node.add(f"/block/{BLOCK_A}", {"hash": BLOCK_A})
        listing = await service.list_blocks(1)
        assert listing.limit_requested == 1
        assert listing.derived_block_hashes_count == 1
        assert fake_node.paths[0] == "/blocks?limit=1"

    @pytest.mark.asyncio
    async def test_hydration_failure_counted(self, fake_node, service):
        fake_node.add("/tx/recent?limit=200", _recent_feed())
        fake_node.add(f"/block/{BLOCK_A}", {"hash": BLOCK_A})

        listing = await service.list_blocks()

        assert [block.hash for block in listing.blocks] == [BLOCK_A]
        assert listing.blocks_failed == 1
        assert "1 of 2 blocks failed to hydrate" in listing.warnings

    @pytest.mark.asyncio
    async def test_empty_primary(self, fake_node, service):
        fake_node.add("/blocks?limit=25", {"blocks": []})
        fake_node.add("/tx/recent?limit=200", {"txs": []})
        listing = await service.list_blocks()
        assert listing.fallback_reason == FallbackReason.BLOCKS_EMPTY
        assert listing.source == DataSource.FALLBACK_DERIVED

    @pytest.mark.asyncio
    async def test_primary_envelope_failure(self, fake_node, service):
        """A 200 whose envelope says ok: false is an error, not an empty list."""
        fake_node.add("/blocks?limit=25", {"ok": False, "error": "index rebuilding"})
        fake_node.add("/tx/recent?limit=200", {"txs": []})
        listing = await service.list_blocks()
        assert listing.fallback_reason == FallbackReason.BLOCKS_ERROR
        assert listing.primary_status == 200
        assert "index rebuilding" in listing.warnings[0]

    @pytest.mark.asyncio
    async def test_primary_error(self, fake_node, service):
        fake_node.add("/blocks?limit=25", {}, status=500)
        fake_node.add("/tx/recent?limit=200", {"txs": []})
        listing = await service.list_blocks()
        assert listing.fallback_reason == FallbackReason.BLOCKS_ERROR
        assert listing.primary_status == 500

    @pytest.mark.asyncio
    async def test_no_included_transactions(self, fake_node, service):
        fake_node.add("/tx/recent?limit=200", {"txs": [{"tx_id": "t1", "status": "pending"}]})
        listing = await service.list_blocks()
        assert listing.ok
        assert listing.blocks == ()
        assert listing.txs_scanned == 1
        assert any("none had included/finalized status" in w for w in listing.warnings)

    @pytest.mark.asyncio
    async def test_feed_failure(self, fake_node, service):
        fake_node.add("/tx/recent?limit=200", {}, status=503)
        listing = await service.list_blocks()
        assert listing.ok is False
        assert listing.error.error_kind == ErrorKind.HTTP_5XX
        assert listing.warnings[-1].startswith("Fallback /tx/recent also failed")
        assert listing.to_dict()["meta"]["primary_endpoint_status"] == 404


# ============================================================
# DASHBOARD
# ============================================================

class TestDashboard:
    """Test dashboard composition."""

    @pytest.mark.asyncio
    async def test_partial_success(self, fake_node, service):
        """Each section succeeds or fails on its own."""
        fake_node.add("/status", {"node_id": "n1"})
        fake_node.add("/tx/recent?limit=20", {"txs": [{"tx_id": "a"}]})

        summary = await service.dashboard_summary()

        assert summary.status.found
        assert summary.recent_transactions.found
        assert summary.peers.kind == LookupKind.NOT_FOUND
        assert summary.fully_available is False
        assert summary.to_dict()["status"]["record"]["node_id"] == "n1"
