"""
Entity Resolver - Universal search over the gateway.

Classifies a free-text query by its syntactic shape, then probes candidate
entity endpoints in a fixed priority order and redirects to the first one
that exists. It never guesses: anything unconfirmed is a structured
not-found carrying the normalized query and guidance.

Priority (kept as data in PROBE_PLAN):
- numeric:      round -> block
- 64-hex:       transaction -> block (primary, then legacy) -> HashTimer
- HT-<64-hex>:  HashTimer only
- anything else: handle lookup

Probes run sequentially; each is one gateway call reduced to a boolean
(2xx means the entity exists, anything else means it does not).
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import quote

from explorer_rpc.exceptions import ProbeTableError
from explorer_rpc.gateway import GatewayProxy
from explorer_rpc.models import SearchResolution


logger = logging.getLogger(__name__)


class QueryCategory(Enum):
    """Syntactic shape of a search query."""
    EMPTY = "empty"
    HANDLE = "handle"
    ACCOUNT = "account"
    NUMERIC = "numeric"
    HEX64 = "hex64"
    HASHTIMER = "hashtimer"
    UNRECOGNIZED = "unrecognized"


class EntityKind(Enum):
    """Entity types the resolver can probe for."""
    TRANSACTION = "transaction"
    BLOCK = "block"
    ROUND = "round"
    TIME_ANCHOR = "time_anchor"
    HANDLE = "handle"
    ACCOUNT = "account"


@dataclass(frozen=True)
class ClassifiedQuery:
    category: QueryCategory
    normalized: str


@dataclass(frozen=True)
class ProbeChain:
    """Entity kinds to probe in order, and the reason used when all miss."""
    kinds: tuple[EntityKind, ...]
    not_found_reason: str


# Upstream probe paths: (primary, legacy). Legacy is tried only on 404.
PROBE_PATHS: dict[EntityKind, tuple[str, Optional[str]]] = {
    EntityKind.TRANSACTION: ("/tx/{id}", None),
    EntityKind.BLOCK: ("/block/{id}", "/blocks/{id}"),
    EntityKind.ROUND: ("/round/{id}", None),
    EntityKind.TIME_ANCHOR: ("/hashtimers/{id}", None),
    EntityKind.HANDLE: ("/handles/{id}", None),
}

# Explorer routes a confirmed entity redirects to.
ROUTES: dict[EntityKind, str] = {
    EntityKind.TRANSACTION: "/tx/{id}",
    EntityKind.BLOCK: "/block/{id}",
    EntityKind.ROUND: "/round/{id}",
    EntityKind.TIME_ANCHOR: "/hashtimer/{id}",
    EntityKind.HANDLE: "/handle/{id}",
    EntityKind.ACCOUNT: "/account/{id}",
}

PROBE_PLAN: dict[QueryCategory, ProbeChain] = {
    QueryCategory.NUMERIC: ProbeChain(
        (EntityKind.ROUND, EntityKind.BLOCK), "height_not_found"
    ),
    QueryCategory.HEX64: ProbeChain(
        (EntityKind.TRANSACTION, EntityKind.BLOCK, EntityKind.TIME_ANCHOR), "hash_not_found"
    ),
    QueryCategory.HASHTIMER: ProbeChain(
        (EntityKind.TIME_ANCHOR,), "hashtimer_not_found"
    ),
    QueryCategory.UNRECOGNIZED: ProbeChain(
        (EntityKind.HANDLE,), "unrecognized_query"
    ),
}

# Redirected without probing; the destination page reports absence itself.
DIRECT_ROUTES: dict[QueryCategory, EntityKind] = {
    QueryCategory.HANDLE: EntityKind.HANDLE,
    QueryCategory.ACCOUNT: EntityKind.ACCOUNT,
}

GUIDANCE: dict[str, tuple[str, ...]] = {
    "empty_query": (
        "Enter a transaction hash, block hash or height, round number, "
        "account address or handle.",
    ),
    "height_not_found": (
        "No round or block exists at this height.",
        "The round may not be finalized yet; try again shortly.",
    ),
    "hash_not_found": (
        "No transaction, block or HashTimer matches this hash.",
        "Recently submitted transactions can take a moment to appear.",
    ),
    "hashtimer_not_found": (
        "No HashTimer matches this identifier.",
    ),
    "unrecognized_query": (
        "Try an account address (0x followed by 40 hex characters).",
        "Try a handle such as @name.ipn.",
        "Try a round or height such as #12034.",
        "Try a 64-character transaction, block or HashTimer hash.",
    ),
}


_HANDLE_SUFFIX = re.compile(r"\.(ipn|ai)\b", re.IGNORECASE)
_ACCOUNT_PREFIXED = re.compile(r"^0x[0-9a-fA-F]{40}$")
_ACCOUNT_BARE = re.compile(r"^[0-9a-fA-F]{40}$")
_NUMERIC = re.compile(r"^[0-9]+$")
_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_HEX_PREFIX = re.compile(r"^0x", re.IGNORECASE)
_HASHTIMER_PREFIX = re.compile(r"^HT-", re.IGNORECASE)


def _hex64(value: str) -> Optional[str]:
    candidate = _HEX_PREFIX.sub("", value).lower()
    return candidate if _HEX64.match(candidate) else None


def classify_query(query: str) -> ClassifiedQuery:
    """
    Classify a raw query by shape, in priority order.

    The normalized form is what routes and not-found results carry:
    lower-case 0x-prefixed accounts, digits without '#', lower-case hex
    without 0x, and the trimmed query otherwise.
    """
    text = (query or "").strip()
    if not text:
        return ClassifiedQuery(QueryCategory.EMPTY, "")

    if text.startswith("@") or _HANDLE_SUFFIX.search(text):
        return ClassifiedQuery(QueryCategory.HANDLE, text)

    if _ACCOUNT_PREFIXED.match(text):
        return ClassifiedQuery(QueryCategory.ACCOUNT, text.lower())
    if _ACCOUNT_BARE.match(text):
        return ClassifiedQuery(QueryCategory.ACCOUNT, f"0x{text.lower()}")

    digits = text[1:] if text.startswith("#") else text
    if _NUMERIC.match(digits):
        return ClassifiedQuery(QueryCategory.NUMERIC, digits)

    hex64 = _hex64(text)
    if hex64:
        return ClassifiedQuery(QueryCategory.HEX64, hex64)

    if _HASHTIMER_PREFIX.match(text):
        anchor = _hex64(_HASHTIMER_PREFIX.sub("", text))
        if anchor:
            return ClassifiedQuery(QueryCategory.HASHTIMER, anchor)

    return ClassifiedQuery(QueryCategory.UNRECOGNIZED, text)


def validate_probe_plan(
    plan: Mapping[QueryCategory, ProbeChain],
    probe_paths: Mapping[EntityKind, tuple[str, Optional[str]]] = PROBE_PATHS,
    routes: Mapping[EntityKind, str] = ROUTES,
) -> None:
    """
    Check a probe plan before use.

    Raises:
        ProbeTableError: Unknown category or entity kind, empty chain,
            missing probe path/route, or missing not-found reason
    """
    for category, chain in plan.items():
        if not isinstance(category, QueryCategory):
            raise ProbeTableError(f"Unknown query category: {category!r}")
        if category in DIRECT_ROUTES or category == QueryCategory.EMPTY:
            raise ProbeTableError("Category is never probed", category=category.value)
        if not isinstance(chain, ProbeChain) or not chain.kinds:
            raise ProbeTableError("Probe chain is empty", category=category.value)
        if not chain.not_found_reason:
            raise ProbeTableError("Probe chain has no not-found reason", category=category.value)
        for kind in chain.kinds:
            if not isinstance(kind, EntityKind):
                raise ProbeTableError(f"Unknown entity kind: {kind!r}", category=category.value)
            if kind not in probe_paths or kind not in routes:
                raise ProbeTableError(
                    f"No probe path or route for {kind.value}",
                    category=category.value,
                )


def _fill(template: str, ident: str) -> str:
    return template.format(id=quote(ident, safe=""))


class EntityResolver:
    """
    Resolve free-text search queries to explorer routes.

    Usage:
        resolver = EntityResolver(gateway)
        resolution = await resolver.resolve("#12034")
        if resolution.is_redirect:
            print(resolution.route)   # /round/12034
    """

    def __init__(
        self,
        gateway: GatewayProxy,
        plan: Optional[Mapping[QueryCategory, ProbeChain]] = None,
    ) -> None:
        self._gateway = gateway
        self._plan = dict(PROBE_PLAN if plan is None else plan)
        validate_probe_plan(self._plan)

    async def resolve(self, query: str) -> SearchResolution:
        """Classify, probe in priority order, and redirect or report not-found."""
        classified = classify_query(query)
        category, normalized = classified.category, classified.normalized

        if category == QueryCategory.EMPTY:
            return self._not_found("empty_query", normalized)

        if category in DIRECT_ROUTES:
            route = _fill(ROUTES[DIRECT_ROUTES[category]], normalized)
            return SearchResolution.redirect(route, normalized)

        chain = self._plan.get(category)
        if chain is None:
            return self._not_found("unrecognized_query", normalized)

        for kind in chain.kinds:
            if await self.probe(kind, normalized):
                logger.debug(f"[resolver] {normalized!r} resolved as {kind.value}")
                return SearchResolution.redirect(_fill(ROUTES[kind], normalized), normalized)

        logger.debug(f"[resolver] {normalized!r} not found ({chain.not_found_reason})")
        return self._not_found(chain.not_found_reason, normalized)

    async def probe(self, kind: EntityKind, ident: str) -> bool:
        """One existence check; the legacy path is tried only on a 404."""
        primary, legacy = PROBE_PATHS[kind]
        if legacy:
            result = await self._gateway.call_with_legacy(_fill(primary, ident), _fill(legacy, ident))
        else:
            result = await self._gateway.call(_fill(primary, ident))
        return result.ok and result.is_success_status

    @staticmethod
    def _not_found(reason: str, normalized: str) -> SearchResolution:
        return SearchResolution.not_found(reason, normalized, GUIDANCE.get(reason, ()))
