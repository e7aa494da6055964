"""Wonderspin roll resolution.

Everything in this module is pure: given the same pool, pity state and random source, `resolve`
returns the same outcomes and the same next pity state. Persistence lives in the roll job service.
"""

import bisect
import random
from collections.abc import Sequence
from dataclasses import dataclass

from app.core.enums import PityRuleKind, WonderspinTier
from app.core.exceptions import WonderspinConfigError
from app.schemas.wonderspin import (
    AssetEntry,
    AssetProbability,
    ObtainedAsset,
    PityState,
    PoolConfig,
    RollOutcome,
)

ROLL_COUNTS = frozenset({1, 5, 10})

WEIGHT_PRECISION = 1000
"""Integer draw units per unit of probability weight, keeps surged weights' fractions"""


@dataclass(frozen=True)
class PityRule:
    """One guaranteed-drop check, evaluated in priority order.

    A rule with no threshold is the normal roll and is always due.
    """

    kind: PityRuleKind
    threshold: str | None
    counter: str | None
    tiers: frozenset[WonderspinTier]
    featured_only: bool = False
    surge_applies: bool = False
    counts_featured: bool = True
    """Whether landing on a featured asset through this rule resets the peak counter"""

    def is_due(self, pool: PoolConfig, state: PityState) -> bool:
        if self.threshold is None or self.counter is None:
            return True
        if getattr(pool, self.threshold) is None:
            return False

        counter: int | None = getattr(state, self.counter)
        return counter is not None and counter <= 1

    def candidates(self, pool: PoolConfig) -> list[AssetEntry]:
        return [
            entry
            for entry in pool.asset_data
            if entry.tier in self.tiers and (entry.featured or not self.featured_only)
        ]


PITY_RULES: tuple[PityRule, ...] = (
    PityRule(
        kind=PityRuleKind.PEAK,
        threshold="peak_threshold",
        counter="rolls_until_peak",
        tiers=frozenset({WonderspinTier.A}),
        featured_only=True,
    ),
    PityRule(
        kind=PityRuleKind.BLESSING,
        threshold="blessing_threshold",
        counter="rolls_until_blessing",
        tiers=frozenset({WonderspinTier.A}),
        counts_featured=False,
    ),
    PityRule(
        kind=PityRuleKind.CREST,
        threshold="crest_threshold",
        counter="rolls_until_crest",
        tiers=frozenset({WonderspinTier.A, WonderspinTier.B}),
        surge_applies=True,
    ),
    PityRule(
        kind=PityRuleKind.NORMAL,
        threshold=None,
        counter=None,
        tiers=frozenset(WonderspinTier),
        surge_applies=True,
    ),
)


def due_rule(pool: PoolConfig, state: PityState) -> PityRule:
    """Return the highest priority rule that is due for the next roll."""
    return next(rule for rule in PITY_RULES if rule.is_due(pool, state))


def surge_step(pool: PoolConfig, state: PityState) -> int | None:
    """Return the current fortune surge step, or `None` if the surge is not active."""
    if pool.surge_threshold is None or pool.blessing_threshold is None:
        return None
    if state.rolls_until_surge is None or state.rolls_until_surge > 1:
        return None
    return state.current_surge_step


def surged_tier_a_probability(
    base_probability: float, surge_threshold: int, blessing_threshold: int, step: int
) -> float:
    """Calculate the boosted tier A probability (FPa) from its base probability (BPa).

    FPa = BPa + ((100 - BPa) / (blessing_threshold - surge_threshold)) * step

    Both probabilities are percentages. The result is capped at 100.
    """
    ramp = (100 - base_probability) / (blessing_threshold - surge_threshold)
    return min(base_probability + ramp * step, 100.0)


def tier_weights(entries: Sequence[AssetEntry]) -> dict[WonderspinTier, int]:
    totals: dict[WonderspinTier, int] = {}
    for entry in entries:
        totals[entry.tier] = totals.get(entry.tier, 0) + entry.probability_weight
    return totals


def surge_scales(
    entries: Sequence[AssetEntry], pool: PoolConfig, step: int
) -> dict[WonderspinTier, float] | None:
    """Per-tier weight multipliers (FPx / BPx) for a fortune surge.

    Tier A receives its boosted share; the remaining share is spread over the other tiers in
    proportion to their base shares, so every non-A tier gets the same multiplier.

    Returns `None` when the boost cannot change anything (no tier A or only tier A eligible).
    """
    if pool.surge_threshold is None or pool.blessing_threshold is None:
        return None

    totals = tier_weights(entries)
    total = sum(totals.values())
    base_a = totals.get(WonderspinTier.A, 0) / total * 100
    if base_a <= 0 or base_a >= 100:
        return None

    surged_a = surged_tier_a_probability(
        base_a, pool.surge_threshold, pool.blessing_threshold, step
    )
    others = (100 - surged_a) / (100 - base_a)

    scales = {tier: others for tier in totals}
    scales[WonderspinTier.A] = surged_a / base_a
    return scales


def candidate_weights(
    rule: PityRule, pool: PoolConfig, state: PityState
) -> tuple[list[AssetEntry], list[float], bool]:
    """Return the rule's eligible entries, their effective weights and whether surge applied."""
    entries = rule.candidates(pool)
    if not entries:
        msg = f"Wonderspin {pool.name!r} has no assets eligible for a {rule.kind} roll"
        raise WonderspinConfigError(msg)

    weights = [float(entry.probability_weight) for entry in entries]

    step = surge_step(pool, state) if rule.surge_applies else None
    scales = surge_scales(entries, pool, step) if step is not None else None
    if scales is None:
        return entries, weights, False

    weights = [weight * scales[entry.tier] for entry, weight in zip(entries, weights, strict=True)]
    return entries, weights, True


def weighted_index(weights: Sequence[float], rng: random.Random) -> int:
    """Pick an index from cumulative integer ranges built from `weights`.

    A single weight is returned without consuming randomness.
    """
    if len(weights) == 1:
        return 0

    bounds: list[int] = []
    upper = 0
    for weight in weights:
        upper += round(weight * WEIGHT_PRECISION)
        bounds.append(upper)

    if upper <= 0:
        msg = "Cannot draw from assets whose weights are all zero"
        raise WonderspinConfigError(msg)

    draw = rng.randrange(upper)
    return bisect.bisect_right(bounds, draw)


def _decrement(counter: int | None) -> int | None:
    return None if counter is None else max(counter - 1, 0)


def advance_pity(
    pool: PoolConfig, state: PityState, entry: AssetEntry, *, featured: bool
) -> PityState:
    """Return the pity state after obtaining `entry`.

    Args:
        pool: The Wonderspin rolled.
        state: Pity state before the roll.
        entry: The asset obtained.
        featured: Whether the roll counts as obtaining a featured asset.
    """
    update: dict[str, int | None] = {"total_rolls": state.total_rolls + 1}

    if entry.tier is WonderspinTier.A:
        update["rolls_until_crest"] = pool.crest_threshold
        update["rolls_until_blessing"] = pool.blessing_threshold
        update["rolls_until_surge"] = pool.surge_threshold
        update["current_surge_step"] = 1
        update["rolls_until_peak"] = (
            pool.peak_threshold if featured else _decrement(state.rolls_until_peak)
        )
        return state.model_copy(update=update)

    if entry.tier is WonderspinTier.B:
        update["rolls_until_crest"] = pool.crest_threshold
    else:
        update["rolls_until_crest"] = _decrement(state.rolls_until_crest)

    update["rolls_until_blessing"] = _decrement(state.rolls_until_blessing)
    update["rolls_until_peak"] = _decrement(state.rolls_until_peak)

    # The surge counter stops at the ramp start; from there each miss climbs one step
    if pool.surge_threshold is not None and state.rolls_until_surge is not None:
        if state.rolls_until_surge <= 1:
            update["current_surge_step"] = state.current_surge_step + 1
        else:
            update["rolls_until_surge"] = state.rolls_until_surge - 1

    return state.model_copy(update=update)


def roll_once(
    pool: PoolConfig, state: PityState, rng: random.Random, *, roll_number: int = 1
) -> tuple[RollOutcome, PityState]:
    rule = due_rule(pool, state)
    entries, weights, surged = candidate_weights(rule, pool, state)

    index = weighted_index(weights, rng)
    entry = entries[index]

    base_total = sum(candidate.probability_weight for candidate in entries)
    base_probability = entry.probability_weight / base_total * 100
    surged_probability = weights[index] / sum(weights) * 100 if surged else None

    peak_reset = entry.featured and rule.counts_featured
    outcome = RollOutcome(
        roll_number=roll_number,
        rule=rule.kind,
        tier=entry.tier,
        featured=entry.featured,
        peak_reset=peak_reset,
        asset=entry,
        base_probability=base_probability,
        surged_probability=surged_probability,
    )
    return outcome, advance_pity(pool, state, entry, featured=peak_reset)


def resolve(
    pool: PoolConfig, state: PityState, roll_count: int, rng: random.Random | None = None
) -> tuple[list[RollOutcome], PityState]:
    """Resolve a batch of rolls.

    Each roll sees the pity state left by the previous one, so a reset on roll 3 of a 10x roll
    applies to roll 4.

    Args:
        pool: The Wonderspin to roll.
        state: The user's pity state before the batch.
        roll_count: 1, 5 or 10.
        rng: Random source. Defaults to `random.SystemRandom`; pass a seeded `random.Random`
            for reproducible results.

    Returns:
        Tuple of (outcomes in roll order, pity state after the batch)
    """
    if roll_count not in ROLL_COUNTS:
        msg = f"Roll count must be one of {sorted(ROLL_COUNTS)}, got {roll_count}"
        raise ValueError(msg)

    rng = rng or random.SystemRandom()

    outcomes: list[RollOutcome] = []
    for roll_number in range(1, roll_count + 1):
        outcome, state = roll_once(pool, state, rng, roll_number=roll_number)
        outcomes.append(outcome)

    return outcomes, state


def aggregate_outcomes(outcomes: Sequence[RollOutcome]) -> list[ObtainedAsset]:
    """Sum the obtained amounts per distinct asset, in first-obtained order."""
    totals: dict[tuple, ObtainedAsset] = {}
    for outcome in outcomes:
        key = outcome.asset.payload_key
        if key in totals:
            totals[key].amount += outcome.asset.amount
        else:
            totals[key] = ObtainedAsset(
                asset_type=outcome.asset.asset_type,
                asset=outcome.asset.asset,
                amount=outcome.asset.amount,
            )
    return list(totals.values())


def current_probabilities(pool: PoolConfig, state: PityState) -> list[AssetProbability]:
    """Return each asset's chance of dropping on the next roll, in percent.

    Assets that are not eligible under the due pity rule get 0.
    """
    rule = due_rule(pool, state)
    entries, weights, _ = candidate_weights(rule, pool, state)
    total = sum(weights)

    chances: dict[int, float] = {
        id(entry): weight / total * 100 for entry, weight in zip(entries, weights, strict=True)
    }
    return [
        AssetProbability(
            asset_type=entry.asset_type,
            asset=entry.asset,
            amount=entry.amount,
            tier=entry.tier,
            featured=entry.featured,
            current_probability=chances.get(id(entry), 0.0),
        )
        for entry in pool.asset_data
    ]
