"""Sampling primitives: seeded draws, loot-table rolls, item coalescing.

Every random draw of a run goes through one ``Rng`` seeded from the run's
seed, which is what makes a run reproducible.

Roll-table semantics: each entry fires independently with its own
probability (entries are not normalized into one partition). A composite
entry that fires resolves to exactly one of its options through a second,
weighted draw. Tertiary drops are rolled on top of the main table and are
not exclusive with it. Guaranteed items are always granted.
"""

from collections.abc import Iterable, Sequence

import numpy as np

from bingosim.models.board import (
    CompositeLootEntry,
    DropOption,
    DropTable,
    ItemStack,
    LootEntry,
    SimpleLootEntry,
    TertiaryDrop,
)


class Rng:
    """Deterministic random source for one run (PCG64)."""

    def __init__(self, seed: int) -> None:
        self._seed = seed
        self._gen = np.random.Generator(np.random.PCG64(seed))

    @property
    def seed(self) -> int:
        return self._seed

    def random(self) -> float:
        """Uniform draw in [0, 1)."""
        return float(self._gen.random())

    def uniform(self, low: float, high: float) -> float:
        if high <= low:
            return float(low)
        return low + (high - low) * self.random()

    def integer(self, low: int, high: int) -> int:
        """Uniform integer in [low, high], both inclusive."""
        if high <= low:
            return int(low)
        return int(self._gen.integers(low, high + 1))

    def chance(self, p: float) -> bool:
        """Bernoulli trial. p <= 0 never fires, p >= 1 always fires (no draw)."""
        if p <= 0.0:
            return False
        if p >= 1.0:
            return True
        return self.random() < p


def _quantity(rng: Rng, quantity_min: int, quantity_max: int | None) -> int:
    if quantity_max is None or quantity_max == quantity_min:
        return quantity_min
    return rng.integer(quantity_min, quantity_max)


def pick_option(options: Sequence[DropOption], rng: Rng) -> DropOption:
    """Choose one option proportionally to its weight."""
    total = sum(o.weight for o in options)
    threshold = rng.random() * total
    cumulative = 0.0
    for option in options:
        cumulative += option.weight
        if threshold < cumulative:
            return option
    return options[-1]


def roll_table(entries: Iterable[LootEntry], rng: Rng) -> list[ItemStack]:
    """Roll every main-table entry independently."""
    stacks: list[ItemStack] = []
    for entry in entries:
        if not rng.chance(entry.weight):
            continue
        if isinstance(entry, SimpleLootEntry):
            qty = _quantity(rng, entry.quantity_min, entry.quantity_max)
            if qty > 0:
                stacks.append(ItemStack(name=entry.item, quantity=qty))
        elif isinstance(entry, CompositeLootEntry):
            option = pick_option(entry.options, rng)
            stacks.extend(s for s in option.items if s.quantity > 0)
    return stacks


def roll_tertiary(drops: Iterable[TertiaryDrop], rng: Rng) -> list[ItemStack]:
    stacks: list[ItemStack] = []
    for drop in drops:
        if rng.chance(drop.probability):
            qty = _quantity(rng, drop.quantity_min, drop.quantity_max)
            if qty > 0:
                stacks.append(ItemStack(name=drop.item, quantity=qty))
    return stacks


def roll_drops(table: DropTable, rng: Rng, *, successes: int = 1) -> list[ItemStack]:
    """Everything one attempt yields, coalesced.

    Guaranteed items and the main table are granted per success; tertiary
    drops are rolled once per attempt that had at least one success.
    """
    if successes < 1:
        return []
    stacks: list[ItemStack] = []
    for _ in range(successes):
        stacks.extend(table.guaranteed)
        stacks.extend(roll_table(table.main, rng))
    stacks.extend(roll_tertiary(table.tertiary, rng))
    return merge_stacks(stacks)


def merge_stacks(stacks: Iterable[ItemStack]) -> list[ItemStack]:
    """Coalesce stacks by case-insensitive name, keeping the first spelling seen.

    ``[Shark x12, shark x3]`` becomes ``[Shark x15]``.
    """
    merged: dict[str, ItemStack] = {}
    for stack in stacks:
        key = stack.name.casefold()
        existing = merged.get(key)
        if existing is None:
            merged[key] = ItemStack(name=stack.name, quantity=stack.quantity)
        else:
            merged[key] = ItemStack(
                name=existing.name, quantity=existing.quantity + stack.quantity,
            )
    return list(merged.values())


class ResourcePool:
    """Items a team has accumulated during one run, keyed case-insensitively."""

    def __init__(self) -> None:
        self._stacks: dict[str, ItemStack] = {}

    def add(self, stacks: Iterable[ItemStack]) -> None:
        for stack in merge_stacks([*self._stacks.values(), *stacks]):
            self._stacks[stack.name.casefold()] = stack

    def quantity(self, name: str) -> int:
        stack = self._stacks.get(name.casefold())
        return stack.quantity if stack is not None else 0

    def holds(self, requirements: dict[str, int]) -> bool:
        return all(self.quantity(name) >= qty for name, qty in requirements.items())

    def deficit(self, name: str, required: int) -> int:
        return max(0, required - self.quantity(name))

    def stacks(self) -> tuple[ItemStack, ...]:
        return tuple(sorted(self._stacks.values(), key=lambda s: s.name.casefold()))

    def __len__(self) -> int:
        return len(self._stacks)


# ---------------------------------------------------------------------------
# Expectations (used by strategies, never by the simulation itself)
# ---------------------------------------------------------------------------


def _mean_quantity(quantity_min: int, quantity_max: int | None) -> float:
    if quantity_max is None:
        return float(quantity_min)
    return (quantity_min + quantity_max) / 2.0


def expected_quantity(table: DropTable, item: str) -> float:
    """Expected units of ``item`` granted by one success."""
    key = item.casefold()
    total = sum(float(s.quantity) for s in table.guaranteed if s.name.casefold() == key)
    for entry in table.main:
        if isinstance(entry, SimpleLootEntry):
            if entry.item.casefold() == key:
                total += entry.weight * _mean_quantity(entry.quantity_min, entry.quantity_max)
        else:
            weight_sum = sum(o.weight for o in entry.options)
            for option in entry.options:
                share = option.weight / weight_sum
                for s in option.items:
                    if s.name.casefold() == key:
                        total += entry.weight * share * s.quantity
    for drop in table.tertiary:
        if drop.item.casefold() == key:
            total += drop.probability * _mean_quantity(drop.quantity_min, drop.quantity_max)
    return total
