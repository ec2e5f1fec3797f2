"""Per-owner asyncio locks."""
import asyncio
from collections import defaultdict


class OwnerLocks:
    """
    One asyncio.Lock per ledger owner.

    Mutations for the same owner run one at a time; different owners
    proceed independently.

    Example:
        >>> locks = OwnerLocks()
        >>> async with locks("alice"):
        ...     ledger.apply_buy(...)
    """

    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __call__(self, owner_id: str) -> asyncio.Lock:
        return self._locks[owner_id]

    def is_locked(self, owner_id: str) -> bool:
        return owner_id in self._locks and self._locks[owner_id].locked()

    def __len__(self) -> int:
        return len(self._locks)
