"""
Batch Planner
=============
Partitions the selected candidates into transaction-sized batches.

Deterministic: the same selection order and capacity always produce the
same batches, sized K, K, ..., remainder. Filtering belongs to the
scanner; the planner only partitions.
"""

import math
from typing import List, Sequence

from trawler.modules.reclaimer.models import Batch, CandidateAccount
from trawler.shared.system.logging import Logger


class BatchPlanner:
    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"Batch capacity must be >= 1, got {capacity}")
        self.capacity = capacity

    def plan(self, selected: Sequence[CandidateAccount]) -> List[Batch]:
        seen = set()
        for account in selected:
            if account.address in seen:
                raise ValueError(f"Account {account.address} selected twice")
            seen.add(account.address)

        batches = [
            Batch(batch_id=i, accounts=tuple(selected[start:start + self.capacity]))
            for i, start in enumerate(range(0, len(selected), self.capacity))
        ]

        Logger.info(
            f"[PLANNER] {len(selected)} accounts -> {len(batches)} batches "
            f"(capacity {self.capacity})"
        )
        return batches

    def expected_batches(self, n: int) -> int:
        return math.ceil(n / self.capacity)


def plan(selected: Sequence[CandidateAccount], capacity: int) -> List[Batch]:
    """Convenience wrapper: BatchPlanner(capacity).plan(selected)."""
    return BatchPlanner(capacity).plan(selected)
