"""
Tests for Search Resolution.

============================================================
PURPOSE
============================================================
Query classification and priority-ordered entity probing.

TEST PRINCIPLES:
- Probe order is fixed: round before block, tx before block before HashTimer
- The first confirmed entity wins and later probes are skipped
- Unconfirmed queries never redirect

============================================================
"""

import pytest

from explorer_rpc.config import GatewayConfig
from explorer_rpc.exceptions import ProbeTableError
from explorer_rpc.gateway import GatewayProxy
from explorer_rpc.models import ResolutionKind
from explorer_rpc.resolver import (
    PROBE_PLAN,
    EntityKind,
    EntityResolver,
    ProbeChain,
    QueryCategory,
    classify_query,
    validate_probe_plan,
)


HEX = "ab" * 32
ADDRESS = "AbCdEf" + "0" * 34


@pytest.fixture
def resolver(gateway):
    return EntityResolver(gateway)


# ============================================================
# CLASSIFICATION
# ============================================================

class TestClassifyQuery:
    """Test query classification."""

    @pytest.mark.parametrize("query,category,normalized", [
        ("", QueryCategory.EMPTY, ""),
        ("   ", QueryCategory.EMPTY, ""),
        ("@alice", QueryCategory.HANDLE, "@alice"),
        ("alice.ipn", QueryCategory.HANDLE, "alice.ipn"),
        ("Bob.AI", QueryCategory.HANDLE, "Bob.AI"),
        (f"0x{ADDRESS}", QueryCategory.ACCOUNT, f"0x{ADDRESS.lower()}"),
        (ADDRESS, QueryCategory.ACCOUNT, f"0x{ADDRESS.lower()}"),
        ("#12034", QueryCategory.NUMERIC, "12034"),
        (" 12034 ", QueryCategory.NUMERIC, "12034"),
        (HEX, QueryCategory.HEX64, HEX),
        (f"0X{HEX.upper()}", QueryCategory.HEX64, HEX),
        (f"HT-{HEX}", QueryCategory.HASHTIMER, HEX),
        (f"ht-0x{HEX}", QueryCategory.HASHTIMER, HEX),
        ("HT-1234", QueryCategory.UNRECOGNIZED, "HT-1234"),
        ("alice", QueryCategory.UNRECOGNIZED, "alice"),
        ("#12a", QueryCategory.UNRECOGNIZED, "#12a"),
        ("0x" + "a" * 63, QueryCategory.UNRECOGNIZED, "0x" + "a" * 63),
    ])
    def test_classify(self, query, category, normalized):
        classified = classify_query(query)
        assert classified.category == category
        assert classified.normalized == normalized


# ============================================================
# PROBE PLAN
# ============================================================

class TestProbePlan:
    """Test probe plan validation."""

    def test_builtin_plan_is_valid(self):
        validate_probe_plan(PROBE_PLAN)

    def test_builtin_priorities(self):
        assert PROBE_PLAN[QueryCategory.NUMERIC].kinds == (EntityKind.ROUND, EntityKind.BLOCK)
        assert PROBE_PLAN[QueryCategory.HEX64].kinds == (
            EntityKind.TRANSACTION, EntityKind.BLOCK, EntityKind.TIME_ANCHOR,
        )

    @pytest.mark.parametrize("plan", [
        {QueryCategory.NUMERIC: ProbeChain((), "height_not_found")},
        {QueryCategory.NUMERIC: ProbeChain((EntityKind.ROUND,), "")},
        {QueryCategory.NUMERIC: ProbeChain((EntityKind.ACCOUNT,), "height_not_found")},
        {QueryCategory.HANDLE: ProbeChain((EntityKind.HANDLE,), "x")},
        {"numeric": ProbeChain((EntityKind.ROUND,), "x")},
        {QueryCategory.NUMERIC: (EntityKind.ROUND,)},
    ])
    def test_malformed_plan_fails_at_construction(self, plan):
        with pytest.raises(ProbeTableError):
            EntityResolver(GatewayProxy(GatewayConfig()), plan=plan)


# ============================================================
# RESOLUTION
# ============================================================

class TestResolve:
    """Test EntityResolver.resolve against a fake node."""

    @pytest.mark.asyncio
    async def test_round_number(self, fake_node, resolver):
        """#12034 redirects to the round when it exists."""
        fake_node.add("/round/12034", {"round_id": 12034})

        resolution = await resolver.resolve("#12034")

        assert resolution.kind == ResolutionKind.REDIRECT
        assert resolution.route == "/round/12034"
        assert fake_node.paths == ["/round/12034"]

    @pytest.mark.asyncio
    async def test_round_beats_block(self, fake_node, resolver):
        fake_node.add("/round/5", {"round_id": 5})
        fake_node.add("/block/5", {"hash": "h"})
        resolution = await resolver.resolve("5")
        assert resolution.route == "/round/5"
        assert "/block/5" not in fake_node.paths

    @pytest.mark.asyncio
    async def test_numeric_block(self, fake_node, resolver):
        fake_node.add("/block/5", {"hash": "h"})
        resolution = await resolver.resolve("5")
        assert resolution.route == "/block/5"

    @pytest.mark.asyncio
    async def test_height_not_found(self, fake_node, resolver):
        resolution = await resolver.resolve("#99")
        assert resolution.reason == "height_not_found"
        assert resolution.normalized == "99"
        assert fake_node.paths == ["/round/99", "/block/99", "/blocks/99"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", [HEX, HEX.upper(), f"0x{HEX}", f"0X{HEX.upper()}"])
    async def test_transaction_beats_block_and_hashtimer(self, fake_node, resolver, query):
        """A 64-hex id that is a transaction redirects there, whatever else exists."""
        fake_node.add(f"/tx/{HEX}", {"tx_id": HEX})
        fake_node.add(f"/block/{HEX}", {"hash": HEX})
        fake_node.add(f"/hashtimers/{HEX}", {"hash_timer_id": HEX})

        resolution = await resolver.resolve(query)

        assert resolution.route == f"/tx/{HEX}"
        assert fake_node.paths == [f"/tx/{HEX}"]

    @pytest.mark.asyncio
    async def test_block_via_legacy_path(self, fake_node, resolver):
        fake_node.add(f"/blocks/{HEX}", {"hash": HEX})
        resolution = await resolver.resolve(HEX)
        assert resolution.route == f"/block/{HEX}"

    @pytest.mark.asyncio
    async def test_hashtimer_after_tx_and_block(self, fake_node, resolver):
        """No transaction, no block, but a HashTimer: redirect to the HashTimer."""
        fake_node.add(f"/hashtimers/{HEX}", {"hash_timer_id": HEX})

        resolution = await resolver.resolve(f"0x{HEX}")

        assert resolution.route == f"/hashtimer/{HEX}"
        assert fake_node.paths == [f"/tx/{HEX}", f"/block/{HEX}", f"/blocks/{HEX}", f"/hashtimers/{HEX}"]

    @pytest.mark.asyncio
    async def test_hash_not_found(self, fake_node, resolver):
        resolution = await resolver.resolve(f"0x{HEX.upper()}")
        assert resolution.kind == ResolutionKind.NOT_FOUND
        assert resolution.reason == "hash_not_found"
        assert resolution.normalized == HEX
        assert resolution.guidance

    @pytest.mark.asyncio
    async def test_probe_failure_counts_as_absent(self, fake_node, resolver):
        """A failing probe moves on to the next candidate."""
        fake_node.add(f"/tx/{HEX}", {}, status=500)
        fake_node.add(f"/block/{HEX}", {"hash": HEX})
        resolution = await resolver.resolve(HEX)
        assert resolution.route == f"/block/{HEX}"

    @pytest.mark.asyncio
    async def test_explicit_hashtimer(self, fake_node, resolver):
        fake_node.add(f"/hashtimers/{HEX}", {"hash_timer_id": HEX})
        resolution = await resolver.resolve(f"HT-{HEX}")
        assert resolution.route == f"/hashtimer/{HEX}"
        assert fake_node.paths == [f"/hashtimers/{HEX}"]

    @pytest.mark.asyncio
    async def test_explicit_hashtimer_missing(self, fake_node, resolver):
        resolution = await resolver.resolve(f"HT-{HEX}")
        assert resolution.reason == "hashtimer_not_found"

    @pytest.mark.asyncio
    async def test_handle_without_probe(self, fake_node, resolver):
        resolution = await resolver.resolve("@alice.ipn")
        assert resolution.route == "/handle/%40alice.ipn"
        assert fake_node.requests == []

    @pytest.mark.asyncio
    async def test_account_without_probe(self, fake_node, resolver):
        resolution = await resolver.resolve(ADDRESS)
        assert resolution.route == f"/account/0x{ADDRESS.lower()}"
        assert fake_node.requests == []

    @pytest.mark.asyncio
    async def test_informal_handle(self, fake_node, resolver):
        fake_node.add("/handles/alice", {"handle": "@alice.ipn"})
        resolution = await resolver.resolve("alice")
        assert resolution.route == "/handle/alice"

    @pytest.mark.asyncio
    async def test_unrecognized(self, fake_node, resolver):
        resolution = await resolver.resolve("  what is this  ")
        assert resolution.reason == "unrecognized_query"
        assert resolution.normalized == "what is this"
        assert len(resolution.guidance) == 4
        assert resolution.to_dict()["to"] is None

    @pytest.mark.asyncio
    async def test_empty(self, fake_node, resolver):
        resolution = await resolver.resolve("   ")
        assert resolution.reason == "empty_query"
        assert fake_node.requests == []
