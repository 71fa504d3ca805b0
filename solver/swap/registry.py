"""
In-memory swap registry.

All mutation happens on the event loop thread and no method awaits, so
check-and-insert is atomic with respect to other tasks.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..core import SwapRecord, SwapState

log = logging.getLogger(__name__)


class SwapRegistry:
    """Swaps keyed by normalized swap id."""

    def __init__(self):
        self._swaps: Dict[str, SwapRecord] = {}

    def __len__(self) -> int:
        return len(self._swaps)

    def __contains__(self, swap_id: str) -> bool:
        return swap_id in self._swaps

    def get(self, swap_id: str) -> Optional[SwapRecord]:
        return self._swaps.get(swap_id)

    def upsert_if_absent(self, swap_id: str,
                         factory: Callable[[], SwapRecord]) -> Tuple[SwapRecord, bool]:
        """
        Return (record, created).

        factory is only called when swap_id is unknown; an existing record is
        returned untouched.
        """
        record = self._swaps.get(swap_id)
        if record is not None:
            return record, False

        record = factory()
        self._swaps[swap_id] = record
        log.debug(f"Registered swap {swap_id} ({record.direction.value})")
        return record, True

    def remove(self, swap_id: str) -> Optional[SwapRecord]:
        return self._swaps.pop(swap_id, None)

    def list(self) -> List[SwapRecord]:
        """Snapshot of all records, oldest first."""
        return sorted(self._swaps.values(), key=lambda r: r.created_at)

    def summary(self) -> Dict[str, int]:
        """Count of records per lifecycle state."""
        counts = {state.value: 0 for state in SwapState}
        for record in self._swaps.values():
            counts[record.state.value] += 1
        counts["total"] = len(self._swaps)
        return counts
