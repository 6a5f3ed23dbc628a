from __future__ import annotations

import random
from typing import Protocol, Sequence, TypeVar

from linkpool.models.domain import DomainRecord

D = TypeVar("D", bound=DomainRecord)


class SelectionStrategyImpl(Protocol):
    def select(self, domains: Sequence[D], cursor: int) -> tuple[D | None, int]: ...


def round_robin_choice(domains: Sequence[D], cursor: int) -> tuple[D | None, int]:
    """Pick the domain whose `order` equals the cursor and advance to the next order.

    When no domain carries the cursor's order (removed or banned), start over at the
    lowest order. Returns the selected domain and the new cursor value.
    """
    if not domains:
        return None, cursor

    ordered = sorted(domains, key=lambda d: d.order)
    index = next((i for i, d in enumerate(ordered) if d.order == cursor), 0)
    selected = ordered[index]
    return selected, ordered[(index + 1) % len(ordered)].order


def random_choice(domains: Sequence[D], rng: random.Random | None = None) -> D | None:
    if not domains:
        return None
    return (rng or random).choice(list(domains))


def weighted_random_choice(domains: Sequence[D], rng: random.Random | None = None) -> D | None:
    if not domains:
        return None

    weights = [max(0, int(d.weight)) for d in domains]
    total = sum(weights)
    if total <= 0:
        return random_choice(domains, rng)

    remainder = (rng or random).random() * total
    for domain, weight in zip(domains, weights, strict=False):
        remainder -= weight
        if remainder <= 0:
            return domain

    return domains[-1]


class RoundRobinStrategy:
    def select(self, domains: Sequence[D], cursor: int) -> tuple[D | None, int]:
        return round_robin_choice(domains, cursor)


class RandomStrategy:
    def __init__(self, rng: random.Random | None = None):
        self.rng = rng

    def select(self, domains: Sequence[D], cursor: int) -> tuple[D | None, int]:
        return random_choice(domains, self.rng), cursor


class WeightedStrategy:
    def __init__(self, rng: random.Random | None = None):
        self.rng = rng

    def select(self, domains: Sequence[D], cursor: int) -> tuple[D | None, int]:
        return weighted_random_choice(domains, self.rng), cursor


class SequentialStrategy:
    """Always the first eligible domain, in the caller's list order."""

    def select(self, domains: Sequence[D], cursor: int) -> tuple[D | None, int]:
        return (domains[0] if domains else None), cursor
