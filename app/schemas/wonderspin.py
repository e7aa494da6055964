from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.enums import AssetType, Currency, PityRuleKind, WonderspinTicketType, WonderspinTier


class AssetEntry(BaseModel):
    """An asset that can be obtained from a Wonderspin."""

    model_config = ConfigDict(frozen=True)

    asset_type: AssetType
    asset: str = Field(min_length=1, max_length=100)
    amount: int = Field(default=1, ge=1)
    tier: WonderspinTier
    featured: bool = False
    probability_weight: int = Field(ge=1, description="Relative weight, not a percentage")
    image_url: str | None = None

    @property
    def payload_key(self) -> tuple[AssetType, str]:
        return self.asset_type, self.asset

    @model_validator(mode="after")
    def check_currency(self) -> Self:
        if self.asset_type is AssetType.CURRENCY and self.asset not in set(Currency):
            msg = f"Unknown currency {self.asset!r}"
            raise ValueError(msg)
        return self


class WonderspinDefinition(BaseModel):
    """Thresholds and asset data shared by pool creation and the roll engine."""

    name: str = Field(min_length=1, max_length=100)
    ticket_type: WonderspinTicketType
    active: bool = True
    crest_threshold: int | None = Field(default=None, ge=1)
    surge_threshold: int | None = Field(default=None, ge=1)
    blessing_threshold: int | None = Field(default=None, ge=1)
    peak_threshold: int | None = Field(default=None, ge=1)
    asset_data: tuple[AssetEntry, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def check_thresholds(self) -> Self:
        tiers = {entry.tier for entry in self.asset_data}
        featured = [entry for entry in self.asset_data if entry.featured]

        if any(entry.tier is not WonderspinTier.A for entry in featured):
            msg = "Featured assets must be A tier"
            raise ValueError(msg)
        if featured and self.peak_threshold is None:
            msg = "A Wonderspin with featured assets must have a `peak_threshold`"
            raise ValueError(msg)
        if not featured and self.peak_threshold is not None:
            msg = "A Wonderspin with a `peak_threshold` must have at least one featured asset"
            raise ValueError(msg)

        if self.surge_threshold is not None:
            if self.blessing_threshold is None:
                msg = "A Wonderspin with a `surge_threshold` must also have a `blessing_threshold`"
                raise ValueError(msg)
            if self.surge_threshold >= self.blessing_threshold:
                msg = "`surge_threshold` must be lower than `blessing_threshold`"
                raise ValueError(msg)

        if (
            self.blessing_threshold is not None or self.surge_threshold is not None
        ) and WonderspinTier.A not in tiers:
            msg = "A Wonderspin with a `blessing_threshold` must have at least one A tier asset"
            raise ValueError(msg)
        if self.crest_threshold is not None and not tiers & {WonderspinTier.A, WonderspinTier.B}:
            msg = "A Wonderspin with a `crest_threshold` must have at least one B or A tier asset"
            raise ValueError(msg)

        return self


class WonderspinCreate(WonderspinDefinition):
    pass


class WonderspinActiveUpdate(BaseModel):
    active: bool


class PoolConfig(WonderspinDefinition):
    """Read-only view of a saved Wonderspin handed to the roll resolver."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int


class PityState(BaseModel):
    """A user's pity counters for one Wonderspin.

    A `None` counter means the matching threshold is unset and that pity mechanic is off.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    total_rolls: int = Field(default=0, ge=0)
    rolls_until_crest: int | None = None
    rolls_until_surge: int | None = None
    current_surge_step: int = Field(default=1, ge=1)
    rolls_until_blessing: int | None = None
    rolls_until_peak: int | None = None

    @classmethod
    def initial(cls, pool: WonderspinDefinition) -> Self:
        return cls(
            total_rolls=0,
            rolls_until_crest=pool.crest_threshold,
            rolls_until_surge=pool.surge_threshold,
            current_surge_step=1,
            rolls_until_blessing=pool.blessing_threshold,
            rolls_until_peak=pool.peak_threshold,
        )


class RollOutcome(BaseModel):
    """Result of a single roll, with the odds it was drawn at."""

    roll_number: int
    rule: PityRuleKind
    tier: WonderspinTier
    featured: bool
    """Whether the obtained asset is featured"""
    peak_reset: bool = False
    """Whether the roll counted as a featured drop and reset the peak counter"""
    asset: AssetEntry
    base_probability: float
    """Chance of this asset among the eligible assets, in percent"""
    surged_probability: float | None = None
    """Chance after the fortune surge boost, only set while surge was active"""


class ObtainedAsset(BaseModel):
    asset_type: AssetType
    asset: str
    amount: int


class RollBatchResult(BaseModel):
    outcomes: list[RollOutcome]
    obtained_assets: list[ObtainedAsset]
    pity: PityState


class AssetProbability(BaseModel):
    asset_type: AssetType
    asset: str
    amount: int
    tier: WonderspinTier
    featured: bool
    current_probability: float


class WonderspinData(BaseModel):
    """A Wonderspin with a user's pity counters and live odds."""

    wonderspin_id: int
    name: str
    ticket_type: WonderspinTicketType
    crest_threshold: int | None
    surge_threshold: int | None
    blessing_threshold: int | None
    peak_threshold: int | None
    pity: PityState
    asset_probabilities: list[AssetProbability]
