"""
Roster retrieval.

The panel caps an unpaginated listing at its default page size without saying
so. A listing at or below that size is treated as possibly truncated and the
roster is re-read page by page under both page-numbering conventions; the
largest result wins.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from vps_carryover.client.panel_client import PanelClient
from vps_carryover.core.errors import NotFound, PanelError
from vps_carryover.storage.models import ResourceSnapshot

logger = logging.getLogger(__name__)

Roster = Dict[str, ResourceSnapshot]

EMPTY_PAGE_STREAK = 2


def parse_servers(servers: Any) -> Roster:
    """Convert one ``vs`` value into snapshots keyed by id.

    Map-shaped values are keyed by the mapping key unless the entry carries
    its own ``vpsid``. List-shaped entries without ``vpsid`` are dropped.
    """
    roster: Roster = {}
    if isinstance(servers, dict):
        entries: Iterable[Tuple[Optional[str], Any]] = servers.items()
    else:
        entries = ((None, entry) for entry in servers)

    for key, entry in entries:
        if key is None and not (isinstance(entry, dict) and entry.get("vpsid") is not None):
            logger.warning("Ignoring roster entry without vpsid: %r", entry)
            continue
        try:
            snapshot = ResourceSnapshot.from_api(key, entry)
        except ValueError as e:
            logger.warning("Ignoring unreadable roster entry %s: %s", key, e)
            continue
        roster[snapshot.vps_id] = snapshot
    return roster


def merge_pages(pages: Iterable[Any]) -> Roster:
    """Merge raw ``vs`` pages into one roster, de-duplicating by id."""
    merged: Roster = {}
    for page in pages:
        merged.update(parse_servers(page))
    return merged


class RosterFetcher:
    """Retrieves the authoritative roster from the panel."""

    def __init__(self, client: PanelClient, page_size: int = 50, max_pages: int = 1000):
        """Initialize the fetcher.

        Args:
            client: Panel client used for every listing request
            page_size: The panel's default page size (truncation threshold)
            max_pages: Upper bound on pages requested per probe sequence
        """
        self.client = client
        self.page_size = page_size
        self.max_pages = max_pages

    def fetch(self) -> Roster:
        """Fetch the full roster.

        Returns:
            Mapping of server id to snapshot (possibly empty)

        Raises:
            TransportError: If the initial listing cannot be completed
            MalformedResponse: If the initial listing is not JSON
            SchemaError: If the initial listing has no ``vs`` field
        """
        initial = parse_servers(self.client.list_servers(reslen=0))
        logger.info("Initial listing returned %d server(s)", len(initial))

        if len(initial) > self.page_size:
            return initial

        logger.info(
            "Small result set (%d <= %d), probing pagination to ensure all servers are retrieved",
            len(initial), self.page_size,
        )
        candidates = [
            ("initial", initial),
            ("zero-based", self._probe_pages(start=0)),
            ("one-based", self._probe_pages(start=1)),
        ]
        label, best = candidates[0]
        for candidate_label, candidate in candidates[1:]:
            if len(candidate) > len(best):
                label, best = candidate_label, candidate

        logger.info(
            "Roster sizes: %s; using %s (%d server(s))",
            ", ".join(f"{name}={len(roster)}" for name, roster in candidates),
            label, len(best),
        )
        return best

    def find(self, vps_id: str, roster: Optional[Roster] = None) -> ResourceSnapshot:
        """Resolve one server, falling back to filtered listings.

        Args:
            vps_id: Server id to look up
            roster: Already fetched roster; fetched here when omitted

        Returns:
            Snapshot of the requested server

        Raises:
            NotFound: If no lookup strategy finds the server
            PanelError: If the roster itself cannot be fetched
        """
        vps_id = str(vps_id).strip()
        if roster is None:
            roster = self.fetch()
        if vps_id in roster:
            return roster[vps_id]

        logger.info("VPS %s not in roster, trying filtered listings", vps_id)
        lookups: List[Tuple[str, Dict[str, Any]]] = [
            ("id filter", {"vpsid": vps_id}),
            ("suspended", {"vsstatus": "s"}),
            ("unsuspended", {"vsstatus": "u"}),
        ]
        for label, filters in lookups:
            try:
                found = parse_servers(self.client.list_servers(reslen=0, **filters))
            except PanelError as e:
                logger.warning("Lookup by %s failed: %s", label, e.describe())
                continue
            if vps_id in found:
                logger.info("VPS %s found via %s listing", vps_id, label)
                return found[vps_id]

        raise NotFound(f"VPS {vps_id} not found in roster", vps_id=vps_id, step="fetch")

    def _probe_pages(self, start: int) -> Roster:
        """Read pages from ``start`` until two consecutive empty pages.

        A page that adds no new ids also ends the sequence; a panel that
        ignores ``page`` keeps repeating the same entries.
        """
        pages: List[Any] = []
        seen = set()
        empty_streak = 0
        page = start
        while empty_streak < EMPTY_PAGE_STREAK and page - start < self.max_pages:
            try:
                servers = self.client.list_servers(reslen=self.page_size, page=page)
            except PanelError as e:
                logger.warning("Page %d unreadable, counting as empty: %s", page, e.describe())
                servers = []

            if len(servers) == 0:
                empty_streak += 1
            else:
                empty_streak = 0
                found = parse_servers(servers)
                if not found.keys() - seen:
                    logger.info("Page %d repeats known servers, stopping probe", page)
                    break
                seen.update(found)
                pages.append(servers)
            page += 1

        return merge_pages(pages)
