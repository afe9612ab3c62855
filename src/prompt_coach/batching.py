"""
Batching for prompt analysis.

Packs prompts into batches that fit a backend's cost and item limits.
Packing is greedy: prompts are taken in prioritization order and added
to the current batch until the next one would overflow it. A prompt
that alone exceeds the limit is sent as its own batch rather than being
dropped or cut.
"""

import math
from typing import Callable, Iterable

import tiktoken

from .common_types import Batch, BatchLimits, Prioritization


CHARS_PER_TOKEN = 4

CostFn = Callable[[str], int]


def estimate_cost(text: str) -> int:
    """Quick cost estimation (4 chars ~ 1 token), rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TokenCostEstimator:
    """
    Exact token counts using tiktoken.

    Slower than estimate_cost(); use it when a backend's limits are
    tight enough that the character heuristic over- or under-fills.
    """

    def __init__(self, model: str = "gpt-4"):
        self.model = model
        self._encoder: tiktoken.Encoding | None = None

    @property
    def encoder(self) -> tiktoken.Encoding:
        """Lazy-load tiktoken encoder."""
        if self._encoder is None:
            self._encoder = tiktoken.encoding_for_model(self.model)
        return self._encoder

    def __call__(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encoder.encode(text))


def get_cost_fn(name: str) -> CostFn:
    """Resolve a configured estimator name ("chars" or "tiktoken")."""
    if name == "tiktoken":
        return TokenCostEstimator()
    if name == "chars":
        return estimate_cost
    raise ValueError(f"Unknown cost estimator: {name}")


def split(
    prompts: Iterable[str],
    max_cost_per_batch: int,
    max_items_per_batch: int | None = None,
    prioritization: Prioritization = Prioritization.LONGEST_FIRST,
    cost_fn: CostFn = estimate_cost,
    reserved_cost: int = 0,
) -> list[Batch]:
    """
    Split prompts into batches.

    Args:
        prompts: Prompt texts, in chronological order
        max_cost_per_batch: Upper bound on the summed cost of one batch
        max_items_per_batch: Upper bound on prompts per batch (None = unbounded)
        prioritization: LONGEST_FIRST packs the most expensive prompts first,
            CHRONOLOGICAL keeps input order
        cost_fn: Cost estimator applied to each prompt
        reserved_cost: Fixed per-request overhead subtracted from the limit

    Returns:
        Batches whose prompts together are exactly the input prompts
    """
    if max_cost_per_batch <= 0:
        raise ValueError("max_cost_per_batch must be positive")
    if max_items_per_batch is not None and max_items_per_batch < 1:
        raise ValueError("max_items_per_batch must be at least 1")

    limit = max(1, max_cost_per_batch - reserved_cost)
    costed = [(text, cost_fn(text)) for text in prompts]

    if prioritization == Prioritization.LONGEST_FIRST:
        # sorted() is stable with reverse=True, equal costs keep input order
        costed = sorted(costed, key=lambda item: item[1], reverse=True)

    batches: list[Batch] = []
    current: list[str] = []
    current_cost = 0

    for text, cost in costed:
        if cost > limit:
            if current:
                batches.append(Batch(prompts=current, cost=current_cost))
                current, current_cost = [], 0
            batches.append(Batch(prompts=[text], cost=cost))
            continue

        over_cost = current and current_cost + cost > limit
        over_items = max_items_per_batch is not None and len(current) >= max_items_per_batch
        if over_cost or over_items:
            batches.append(Batch(prompts=current, cost=current_cost))
            current, current_cost = [], 0

        current.append(text)
        current_cost += cost

    if current:
        batches.append(Batch(prompts=current, cost=current_cost))

    return batches


def split_with_limits(
    prompts: Iterable[str],
    limits: BatchLimits,
    cost_fn: CostFn = estimate_cost,
    reserved_cost: int = 0,
) -> list[Batch]:
    return split(
        prompts,
        limits.max_cost_per_batch,
        limits.max_items_per_batch,
        limits.prioritization,
        cost_fn=cost_fn,
        reserved_cost=reserved_cost,
    )
