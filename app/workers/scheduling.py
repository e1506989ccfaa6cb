# =============================================================================
# Weighted Queue Ordering — kombu Queue-Order Strategy
# =============================================================================
#
# Celery's Redis transport consumes with BRPOP over the worker's queues.
# BRPOP pops from the FIRST non-empty key in the order given, so whoever
# decides that order decides which queue is serviced. kombu lets the
# transport take that decision from a pluggable "cycle" object:
#
#     broker_transport_options={"queue_order_strategy": WeightedQueueCycle}
#
# The built-in strategies are round_robin (equal share), sorted and
# priority (strict; low queues can starve). WeightedQueueCycle reorders
# the queues on every poll by weighted random draw without replacement,
# so with weights critical=6, default=3, low=1 the critical queue is
# polled first 60% of the time, default 30%, low 10%. When the head
# queue is empty BRPOP falls through to the next one, so no work waits
# behind an idle high-priority queue.
#
# kombu cycle interface:
#   update(queues)   — the consumer's active queue set changed
#   consume(n)       — return up to n queue names, in poll order
#   rotate(last)     — called with the queue a message came from
# =============================================================================

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping

from app.workers.queue import QUEUE_WEIGHTS

DEFAULT_WEIGHT = 1


def weighted_queue_order(
    queues: Iterable[str],
    weights: Mapping[str, int] = QUEUE_WEIGHTS,
    rng: random.Random | None = None,
) -> list[str]:
    """
    Order queue names by weighted random draw without replacement.

    Queues missing from `weights` get DEFAULT_WEIGHT. Ties in the input
    order don't matter: the result depends only on weights and `rng`.
    """
    rng = rng or random
    remaining = sorted(set(queues))
    ordered: list[str] = []
    while remaining:
        queue_weights = [
            max(weights.get(name, DEFAULT_WEIGHT), 0) for name in remaining
        ]
        if sum(queue_weights) == 0:
            ordered.extend(remaining)
            break
        pick = rng.choices(remaining, weights=queue_weights, k=1)[0]
        ordered.append(pick)
        remaining.remove(pick)
    return ordered


class WeightedQueueCycle:
    """kombu queue cycle that favours queues by QUEUE_WEIGHTS."""

    weights: Mapping[str, int] = QUEUE_WEIGHTS

    def __init__(self, it: Iterable[str] | None = None) -> None:
        self.items: list[str] = list(it) if it is not None else []
        self._rng = random.Random()

    def update(self, it: Iterable[str]) -> None:
        self.items[:] = list(it)

    def consume(self, n: int) -> list[str]:
        return weighted_queue_order(self.items, self.weights, self._rng)[:n]

    def rotate(self, last_used: str) -> str:
        # Order is redrawn on every consume(); nothing to rotate
        return last_used
