"""Staleness-aware planning of upstream calls for a sync cycle."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional
import logging

from .db import utcnow

logger = logging.getLogger(__name__)


def _unique(symbols: Iterable[str]) -> List[str]:
    out = []
    seen = set()
    for symbol in symbols:
        value = str(symbol).strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


@dataclass
class SyncPlan:
    """
    Upstream calls needed this cycle.

    At most one batched call per category: ids, metadata, quotes.
    """
    tracked: List[str]
    ids_needed: List[str] = field(default_factory=list)
    metadata_needed: List[str] = field(default_factory=list)
    id_map: Dict[str, str] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)

    @property
    def needs_ids(self) -> bool:
        return bool(self.ids_needed)

    @property
    def needs_metadata(self) -> bool:
        return bool(self.metadata_needed)

    def apply_resolved_ids(self, resolved: Dict[str, str]) -> None:
        """
        Merge freshly resolved IDs into id_map.

        Symbols the lookup could not resolve get no price fetch and are
        dropped from the metadata scope.
        """
        resolved = {str(k).upper(): str(v) for k, v in resolved.items()}
        for symbol in self.ids_needed:
            if symbol in resolved:
                self.id_map[symbol] = resolved[symbol]
            elif symbol not in self.unresolved:
                self.unresolved.append(symbol)

        if self.unresolved:
            logger.warning(f"Could not resolve IDs for: {', '.join(self.unresolved)}")
            self.metadata_needed = [s for s in self.metadata_needed if s not in self.unresolved]

    def price_ids(self) -> List[str]:
        """Internal IDs of every tracked symbol that has one. Price is never planned away."""
        return [self.id_map[s] for s in self.tracked if s in self.id_map]

    def metadata_ids(self) -> List[str]:
        return [self.id_map[s] for s in self.metadata_needed if s in self.id_map]


class MetadataPlanner:
    """
    Decides the minimal set of upstream calls for a cycle.

    Prices change constantly; names and logos almost never; internal IDs
    never. So:
    - ID lookup only for symbols with no cached internal ID
    - metadata only when the logo is missing, the metadata is older than
      the TTL, or the symbol is new
    - price for every resolved symbol, every cycle
    """

    METADATA_TTL = timedelta(days=7)

    def __init__(self, metadata_ttl: timedelta = None):
        if metadata_ttl is not None:
            self.METADATA_TTL = metadata_ttl

    def metadata_is_stale(self, cached: Optional[Dict], now: datetime) -> bool:
        """Whether a cached row needs its name/logo fetched again."""
        if cached is None:
            return True
        if not cached.get('logo_url'):
            return True
        updated_at = cached.get('metadata_updated_at')
        if updated_at is None:
            return True
        return (now - updated_at) > self.METADATA_TTL

    def plan(
        self,
        tracked_symbols: Iterable[str],
        cached_state: Dict[str, Dict],
        now: Optional[datetime] = None,
        resolves_ids: bool = True,
        fetches_metadata: bool = True
    ) -> SyncPlan:
        """
        Build the plan for this cycle.

        Args:
            tracked_symbols: Symbols to keep fresh
            cached_state: Cached quote rows keyed by symbol
            now: Reference time for the TTL check
            resolves_ids: Provider maps symbols to internal IDs; otherwise a
                symbol is its own ID
            fetches_metadata: Provider has a metadata endpoint

        Returns:
            SyncPlan
        """
        now = now or utcnow()
        tracked = _unique(tracked_symbols)
        plan = SyncPlan(tracked=tracked)

        for symbol in tracked:
            cached = cached_state.get(symbol)
            internal_id = cached.get('provider_internal_id') if cached else None

            if not resolves_ids:
                plan.id_map[symbol] = symbol
            elif internal_id:
                plan.id_map[symbol] = str(internal_id)
            else:
                plan.ids_needed.append(symbol)

            if not fetches_metadata:
                continue

            if symbol in plan.ids_needed or self.metadata_is_stale(cached, now):
                plan.metadata_needed.append(symbol)

        logger.debug(
            f"Plan: {len(tracked)} tracked, ids={plan.ids_needed}, metadata={plan.metadata_needed}"
        )
        return plan
