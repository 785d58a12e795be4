"""
Explorer Service - Entity lookups and list fallbacks over the gateway.

================================================================================
RESPONSIBILITY
================================================================================
Turn GatewayResults into typed outcomes for the presentation layer:

- EntityLookup: a canonical record, a typed not-found, or a typed error
- BlockListing: recent blocks, flagged `fallback_derived` when the block list
  had to be rebuilt from the recent-transaction feed
- DashboardSummary: status, peers and recent transactions fetched
  concurrently, each allowed to fail on its own

Nothing here raises for absence, timeouts or malformed upstream data.
================================================================================
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Optional
from urllib.parse import quote

from explorer_rpc.envelope import Envelope, unwrap_result
from explorer_rpc.gateway import GatewayProxy
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
    GatewayResult,
    Handle,
    Peer,
    Round,
    StatusSnapshot,
    TimeAnchor,
    Transaction,
    TxStatus,
)
from explorer_rpc.normalizer import (
    find_list,
    normalize_account,
    normalize_block,
    normalize_blocks,
    normalize_file,
    normalize_files,
    normalize_handle,
    normalize_handles,
    normalize_peers,
    normalize_round,
    normalize_status_snapshot,
    normalize_time_anchor,
    normalize_transaction,
    normalize_transactions,
)


logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    """Percent-encode one path segment."""
    return quote(value.strip(), safe="")


def _envelope_failure(result: GatewayResult, envelope: Envelope) -> GatewayResult:
    """A 2xx response whose body reports failure (or is not an object/array)."""
    kind = (
        ErrorKind.INVALID_RESPONSE
        if envelope.error_code == "invalid_payload"
        else ErrorKind.UNKNOWN_ERROR
    )
    return replace(result, ok=False, data=None, error_kind=kind, detail=envelope.error)


def _reports_not_found(envelope: Envelope) -> bool:
    text = f"{envelope.error_code or ''} {envelope.error or ''}".lower()
    return "not_found" in text or "not found" in text


class ExplorerService:
    """
    Typed explorer lookups over a GatewayProxy.

    Usage:
        async with GatewayProxy(config) as gateway:
            service = ExplorerService(gateway)
            lookup = await service.get_transaction(tx_id)
            if lookup.found:
                print(lookup.record.status)
    """

    BLOCK_SCAN_STATUSES = (TxStatus.INCLUDED, TxStatus.FINALIZED)

    def __init__(self, gateway: GatewayProxy) -> None:
        self._gateway = gateway
        self._config = gateway.config

    @property
    def gateway(self) -> GatewayProxy:
        return self._gateway

    # ─────────────────────────────────────────────────────────────
    # Single entities
    # ─────────────────────────────────────────────────────────────

    async def _lookup(
        self,
        entity: str,
        path: str,
        normalizer: Callable[[Any, str], Any],
        fallback_id: str,
        legacy: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> EntityLookup:
        if legacy:
            result = await self._gateway.call_with_legacy(path, legacy, timeout)
        else:
            result = await self._gateway.call(path, timeout)

        if not result.ok:
            if result.is_not_found:
                return EntityLookup.missing(f"{entity}_not_found")
            logger.warning(f"[service] {entity} lookup failed: {result.error_kind.value} ({path})")
            return EntityLookup.failed(result)

        envelope = unwrap_result(result)
        if not envelope.ok:
            if _reports_not_found(envelope):
                return EntityLookup.missing(f"{entity}_not_found")
            return EntityLookup.failed(_envelope_failure(result, envelope))

        return EntityLookup.of(normalizer(envelope.payload, fallback_id), result.fetched_via)

    async def get_transaction(self, tx_id: str) -> EntityLookup[Transaction]:
        return await self._lookup(
            "transaction", f"/tx/{_segment(tx_id)}", normalize_transaction, tx_id.strip()
        )

    async def get_block(self, block_id: str, timeout: Optional[float] = None) -> EntityLookup[Block]:
        """Block by hash or height: /block/<id>, legacy /blocks/<id>."""
        segment = _segment(block_id)
        return await self._lookup(
            "block",
            f"/block/{segment}",
            normalize_block,
            block_id.strip(),
            legacy=f"/blocks/{segment}",
            timeout=timeout,
        )

    async def get_round(self, round_id: str) -> EntityLookup[Round]:
        return await self._lookup(
            "round", f"/round/{_segment(round_id)}", normalize_round, round_id.strip()
        )

    async def get_account(self, address: str) -> EntityLookup[Account]:
        segment = _segment(address)
        return await self._lookup(
            "account",
            f"/accounts/{segment}",
            normalize_account,
            address.strip(),
            legacy=f"/account/{segment}",
        )

    async def get_file(self, file_id: str) -> EntityLookup[FileDescriptor]:
        return await self._lookup(
            "file", f"/files/{_segment(file_id)}", normalize_file, file_id.strip()
        )

    async def get_time_anchor(self, anchor_id: str) -> EntityLookup[TimeAnchor]:
        return await self._lookup(
            "hashtimer",
            f"/hashtimers/{_segment(anchor_id)}",
            normalize_time_anchor,
            anchor_id.strip(),
        )

    async def get_status(self) -> EntityLookup[StatusSnapshot]:
        return await self._lookup(
            "status", "/status", lambda payload, _: normalize_status_snapshot(payload), ""
        )

    async def get_handle(self, name: str) -> EntityLookup[Handle]:
        """
        Look a handle up through the known lookup spellings, in order.

        A 404, or a list response with no matches, moves on to the next
        spelling; any other failure stops with an error. A single object
        counts only when it names a handle. All misses give not-found.
        """
        normalized = name.strip()
        encoded = _segment(normalized)
        candidates = (
            f"/handles/{encoded}",
            f"/handles?query={encoded}",
            f"/handles?handle={encoded}",
        )

        for path in candidates:
            result = await self._gateway.call(path)
            if not result.ok:
                if result.is_not_found:
                    continue
                logger.warning(
                    f"[service] handle lookup stopped on {path}: {result.error_kind.value}"
                )
                return EntityLookup.failed(result)

            envelope = unwrap_result(result)
            if not envelope.ok:
                if _reports_not_found(envelope):
                    continue
                return EntityLookup.failed(_envelope_failure(result, envelope))

            payload = envelope.payload
            matches = find_list(payload, ("handles",))
            if matches is not None:
                if matches:
                    return EntityLookup.of(normalize_handle(matches[0], normalized))
                continue

            record = normalize_handle(payload)
            if record.name:
                return EntityLookup.of(record)

        return EntityLookup.missing("handle_not_found")

    # ─────────────────────────────────────────────────────────────
    # Lists
    # ─────────────────────────────────────────────────────────────

    async def _list(
        self,
        entity: str,
        path: str,
        normalizer: Callable[[Any], list],
        timeout: Optional[float] = None,
    ) -> EntityLookup[list]:
        result = await self._gateway.call(path, timeout)
        if not result.ok:
            if result.is_not_found:
                return EntityLookup.missing(f"{entity}_not_found")
            return EntityLookup.failed(result)

        envelope = unwrap_result(result)
        if not envelope.ok:
            return EntityLookup.failed(_envelope_failure(result, envelope))
        return EntityLookup.of(normalizer(envelope.payload), result.fetched_via)

    async def get_recent_transactions(self, limit: int = 50) -> EntityLookup[list[Transaction]]:
        limit = max(1, min(limit, self._config.max_tx_scan))
        return await self._list("transactions", f"/tx/recent?limit={limit}", normalize_transactions)

    async def list_files(self, limit: int = 100) -> EntityLookup[list[FileDescriptor]]:
        return await self._list("files", f"/files?limit={max(1, limit)}", normalize_files)

    async def list_handles(self, limit: int = 100) -> EntityLookup[list[Handle]]:
        return await self._list("handles", f"/handles?limit={max(1, limit)}", normalize_handles)

    async def get_peers(self) -> EntityLookup[list[Peer]]:
        """
        Peers from /peers; when that fails, the `peers` array of /status.

        The status fallback is flagged status_fallback. Validator ids are not
        peers and are never turned into peer records.
        """
        result = await self._gateway.call("/peers")
        if result.ok:
            envelope = unwrap_result(result)
            if envelope.ok:
                return EntityLookup.of(normalize_peers(envelope.payload), result.fetched_via)
            result = _envelope_failure(result, envelope)

        status = await self._gateway.call("/status")
        envelope = unwrap_result(status)
        if envelope.ok and isinstance(envelope.payload, dict):
            embedded = envelope.payload.get("peers")
            if isinstance(embedded, list):
                logger.warning("[service] /peers unavailable, peers derived from /status")
                return EntityLookup.of(normalize_peers(embedded), DataSource.STATUS_FALLBACK)

        if result.is_not_found:
            return EntityLookup.missing("peers_not_found")
        return EntityLookup.failed(result)

    # ─────────────────────────────────────────────────────────────
    # Block listing with tx-derived fallback
    # ─────────────────────────────────────────────────────────────

    def clamp_block_limit(self, limit: Any) -> int:
        """Clamp a requested block count into 1..max_blocks."""
        try:
            value = int(limit)
        except (TypeError, ValueError):
            return self._config.max_blocks
        return max(1, min(value, self._config.max_blocks))

    async def list_blocks(self, limit: Any = None) -> BlockListing:
        """
        Recent blocks, newest first.

        Tries /blocks?limit=N. When that is absent (404), fails, or returns
        no blocks, the list is derived from /tx/recent: unique block hashes
        of included/finalized transactions are collected in discovery order
        and each is hydrated individually. Derived listings are always
        flagged source=fallback_derived.
        """
        limit = self.clamp_block_limit(limit if limit is not None else self._config.max_blocks)
        warnings: list[str] = []

        primary = await self._gateway.call(f"/blocks?limit={limit}")
        envelope = unwrap_result(primary) if primary.ok else None
        if envelope is not None and not envelope.ok:
            reason = FallbackReason.BLOCKS_ERROR
            warnings.append(
                f"Primary /blocks endpoint reported failure ({envelope.error}), using tx-derived fallback"
            )
        elif envelope is not None:
            blocks = normalize_blocks(envelope.payload)
            if blocks:
                return BlockListing(
                    ok=True,
                    blocks=tuple(blocks[:limit]),
                    source=DataSource.PRIMARY,
                    limit_requested=limit,
                    hydrated_blocks_count=min(len(blocks), limit),
                    primary_status=primary.http_status,
                )
            reason = FallbackReason.BLOCKS_EMPTY
            warnings.append("Primary /blocks endpoint returned no blocks, using tx-derived fallback")
        elif primary.is_not_found:
            reason = FallbackReason.BLOCKS_404
            warnings.append(
                "Primary /blocks endpoint returns 404 (not implemented), using tx-derived fallback"
            )
        else:
            reason = FallbackReason.BLOCKS_ERROR
            warnings.append(
                f"Primary /blocks endpoint failed ({primary.error_kind.value}), using tx-derived fallback"
            )

        logger.warning(f"[service] Deriving block list from /tx/recent ({reason.value})")
        return await self._derive_blocks(limit, reason, primary, warnings)

    async def _derive_blocks(
        self,
        limit: int,
        reason: FallbackReason,
        primary: GatewayResult,
        warnings: list[str],
    ) -> BlockListing:
        listing = dict(
            source=DataSource.FALLBACK_DERIVED,
            limit_requested=limit,
            fallback_reason=reason,
            primary_status=primary.http_status,
        )

        feed = await self._gateway.call(f"/tx/recent?limit={self._config.max_tx_scan}")
        envelope = unwrap_result(feed)
        if not envelope.ok:
            error = feed if not feed.ok else _envelope_failure(feed, envelope)
            warnings.append(f"Fallback /tx/recent also failed: {error.detail or error.error_kind.value}")
            return BlockListing(
                ok=False, blocks=(), warnings=tuple(warnings), error=error, **listing
            )

        transactions = normalize_transactions(envelope.payload)
        hashes: list[str] = []
        for tx in transactions:
            if tx.status not in self.BLOCK_SCAN_STATUSES or tx.included_in is None:
                continue
            block_hash = tx.included_in.block_hash
            if block_hash and block_hash not in hashes:
                hashes.append(block_hash)
            if len(hashes) >= limit:
                break

        if not hashes:
            warnings.append(
                f"Scanned {len(transactions)} transactions but none had "
                "included/finalized status with block hashes"
            )
            return BlockListing(
                ok=True,
                blocks=(),
                txs_scanned=len(transactions),
                warnings=tuple(warnings),
                **listing,
            )

        blocks = await self._hydrate_blocks(hashes)
        hydrated = [block for block in blocks if block is not None]
        failed = len(hashes) - len(hydrated)
        if failed:
            warnings.append(f"{failed} of {len(hashes)} blocks failed to hydrate")
            logger.warning(f"[service] {failed} of {len(hashes)} derived blocks failed to hydrate")

        if hydrated and all(block.timestamp_ms is not None for block in hydrated):
            hydrated.sort(key=lambda block: block.timestamp_ms, reverse=True)

        return BlockListing(
            ok=True,
            blocks=tuple(hydrated),
            derived_block_hashes_count=len(hashes),
            hydrated_blocks_count=len(hydrated),
            blocks_failed=failed,
            txs_scanned=len(transactions),
            warnings=tuple(warnings),
            **listing,
        )

    async def _hydrate_blocks(self, hashes: list[str]) -> list[Optional[Block]]:
        """Fetch each block, at most hydration_concurrency at a time; order kept."""
        semaphore = asyncio.Semaphore(self._config.hydration_concurrency)

        async def hydrate(block_hash: str) -> Optional[Block]:
            async with semaphore:
                lookup = await self.get_block(block_hash, timeout=self._config.hydration_timeout)
            if not lookup.found:
                logger.debug(f"[service] hydration of {block_hash} failed: {lookup.kind.value}")
                return None
            return lookup.record

        return list(await asyncio.gather(*(hydrate(block_hash) for block_hash in hashes)))

    # ─────────────────────────────────────────────────────────────
    # Dashboard
    # ─────────────────────────────────────────────────────────────

    async def dashboard_summary(self, recent_limit: int = 20) -> DashboardSummary:
        """Status, peers and recent transactions, fetched concurrently."""
        status, peers, recent = await asyncio.gather(
            self.get_status(),
            self.get_peers(),
            self.get_recent_transactions(recent_limit),
        )
        return DashboardSummary(status=status, peers=peers, recent_transactions=recent)
