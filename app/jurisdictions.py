"""
app/jurisdictions.py

Per-jurisdiction APL source configuration.

Each state publishes its Approved Product List through a different
processor with its own column names, file format, and sync cadence. The
registry below captures those differences as data so the transformer,
scheduler, and health monitor stay generic.

Environment overrides (``<ST>`` is the two-letter state code):
  ``<ST>_APL_DOWNLOAD_URL``  source URL
  ``<ST>_APL_LOCAL_PATH``    local file used instead of the URL
  ``<ST>_APL_USE_LOCAL_FILE`` read the local file even when a URL is set
  ``<ST>_APL_CHECK_FOR_UPDATES`` HEAD-check the URL before scheduled downloads
  ``<ST>_SYNC_CRON``         default cron expression
  ``<ST>_ALERT_THRESHOLD``   consecutive failures before alerting
  ``APL_ENABLED_STATES``     comma-separated subset of states to schedule
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from functools import lru_cache
from typing import Mapping
from zoneinfo import ZoneInfo

from app.config import (
    _get_bool_env,
    _get_int_env,
    _get_optional_str_env,
    _get_str_env,
    get_sync_settings,
)
from app.domain.apl import APLDataSource
from app.errors import UnknownJurisdictionError

# ---------------------------------------------------------------------------
# Column alias tables (ordered: first match wins)
# ---------------------------------------------------------------------------

FIS_COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "upc": ("UPC", "upc", "UPC Code", "Product UPC"),
    "description": ("Product Description", "Description", "Product", "Product Name"),
    "category": ("Category", "Food Category", "Benefit Category", "category"),
    "subcategory": ("Subcategory", "Sub Category", "subcategory"),
    "size": ("Package Size", "Size", "Container Size", "size"),
    "min_size": ("Min Size", "Minimum Size", "minSize"),
    "max_size": ("Max Size", "Maximum Size", "maxSize"),
    "participant_types": ("Participant Types", "Eligible Participants", "Eligible For"),
    "effective_date": ("Effective Date", "Begin Date", "Start Date"),
    "expiration_date": ("Expiration Date", "End Date", "Termination Date"),
    "brand": ("Brand", "Brand Name", "Manufacturer"),
    "contract_brand": ("Contract Brand", "contractBrand"),
    "artificial_dyes": ("Artificial Dyes",),
    "notes": ("Notes", "Remarks", "Comments", "notes"),
}

CONDUENT_COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "upc": ("UPC/PLU", "UPC", "upc", "UPC Code"),
    "description": ("Product Description", "Item Description", "Description", "Product"),
    "category": ("Food Category", "Category", "Benefit Category"),
    "subcategory": ("Sub Category", "Subcategory"),
    "size": ("Unit Size", "Package Size", "Size"),
    "min_size": ("Minimum Size", "Min Size"),
    "max_size": ("Maximum Size", "Max Size"),
    "participant_types": ("Participant Category", "Participant Types", "Eligible Participants"),
    "effective_date": ("Begin Date", "Effective Date", "Start Date"),
    "expiration_date": ("End Date", "Expiration Date", "Termination Date"),
    "brand": ("Brand Name", "Brand", "Manufacturer"),
    "notes": ("Remarks", "Notes", "Comments"),
}

STATE_COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "upc": ("UPC", "upc", "UPC Code", "Item Number"),
    "description": ("Item Name", "Product Name", "Product Description", "Description"),
    "category": ("Category", "Food Category", "Benefit Category"),
    "subcategory": ("Subcategory", "Sub Category"),
    "size": ("Size", "Package Size", "Container Size"),
    "min_size": ("Min Size", "Minimum Size"),
    "max_size": ("Max Size", "Maximum Size"),
    "participant_types": ("Eligible For", "Participant Types", "Eligible Participants"),
    "effective_date": ("Effective Date", "Start Date", "Begin Date"),
    "expiration_date": ("Expiration Date", "End Date"),
    "brand": ("Brand", "Brand Name"),
    "organic_only": ("Organic Only", "Organic"),
    "local_preference": ("Local Preference", "Local"),
    "notes": ("Notes", "Comments"),
}


# ---------------------------------------------------------------------------
# Config types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RolloutPhase:
    """
    Time-bounded policy window with its own sync cadence (inclusive dates).
    """

    label: str
    start: date
    end: date
    cron: str

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class JurisdictionConfig:
    """
    Everything needed to fetch, transform, and schedule one state's APL.
    """

    state: str
    name: str
    data_source: str
    timezone: str
    default_cron: str
    download_url: str | None = None
    local_file_path: str | None = None
    use_local_file: bool = False
    check_for_updates: bool = True
    column_aliases: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: dict(FIS_COLUMN_ALIASES))
    allow_csv_fallback: bool = False
    rollout_phases: tuple[RolloutPhase, ...] = ()
    alert_threshold: int = 3
    min_expected_entries: int | None = None
    max_expected_entries: int | None = None
    reject_artificial_dyes: bool = False
    track_contract_formula: bool = False
    contract_start_date: date | None = None
    track_organic_local: bool = False

    @property
    def reads_local_file(self) -> bool:
        return bool(self.local_file_path) and (self.use_local_file or not self.download_url)

    def active_phase(self, when: datetime) -> RolloutPhase | None:
        """
        Return the rollout phase covering ``when`` in the jurisdiction's local date.
        """

        local_day = when.astimezone(ZoneInfo(self.timezone)).date()
        for phase in self.rollout_phases:
            if phase.contains(local_day):
                return phase
        return None

    def select_cadence(self, when: datetime) -> str:
        """
        Return the cron expression that applies at ``when``.
        """

        phase = self.active_phase(when)
        return phase.cron if phase is not None else self.default_cron

    def next_phase_boundary(self, when: datetime) -> date | None:
        """
        Next local date on which the applicable cadence may change.

        The scheduler fires a one-shot job at local midnight of this date.
        """

        local_day = when.astimezone(ZoneInfo(self.timezone)).date()
        boundaries: list[date] = []
        for phase in self.rollout_phases:
            if phase.start > local_day:
                boundaries.append(phase.start)
            if phase.end >= local_day:
                boundaries.append(date.fromordinal(phase.end.toordinal() + 1))
        return min(boundaries) if boundaries else None


# ---------------------------------------------------------------------------
# Built-in jurisdictions
# ---------------------------------------------------------------------------

FLORIDA_ROLLOUT_PHASES: tuple[RolloutPhase, ...] = (
    RolloutPhase(
        label="phased_rollout",
        start=date(2025, 10, 1),
        end=date(2026, 3, 31),
        cron="0 3 * * *",
    ),
)

_BUILTIN_JURISDICTIONS: tuple[JurisdictionConfig, ...] = (
    JurisdictionConfig(
        state="MI",
        name="Michigan",
        data_source=APLDataSource.FIS,
        timezone="America/Detroit",
        default_cron="0 2 * * *",
        column_aliases=FIS_COLUMN_ALIASES,
        min_expected_entries=100,
        max_expected_entries=10_000,
    ),
    JurisdictionConfig(
        state="NC",
        name="North Carolina",
        data_source=APLDataSource.CONDUENT,
        timezone="America/New_York",
        default_cron="0 3 * * *",
        column_aliases=CONDUENT_COLUMN_ALIASES,
        allow_csv_fallback=True,
        min_expected_entries=100,
        max_expected_entries=15_000,
    ),
    JurisdictionConfig(
        state="FL",
        name="Florida",
        data_source=APLDataSource.FIS,
        timezone="America/New_York",
        default_cron="0 3 * * mon",
        column_aliases=FIS_COLUMN_ALIASES,
        allow_csv_fallback=True,
        rollout_phases=FLORIDA_ROLLOUT_PHASES,
        reject_artificial_dyes=True,
        track_contract_formula=True,
        contract_start_date=date(2026, 2, 1),
    ),
    JurisdictionConfig(
        state="OR",
        name="Oregon",
        data_source=APLDataSource.STATE,
        timezone="America/Los_Angeles",
        default_cron="0 4 * * *",
        download_url="https://www.oregon.gov/oha/ph/healthypeoplefamilies/wic/Documents/OregonWICAplList.xlsx",
        column_aliases=STATE_COLUMN_ALIASES,
        allow_csv_fallback=True,
        track_organic_local=True,
    ),
)


def _apply_env_overrides(config: JurisdictionConfig, *, default_threshold: int) -> JurisdictionConfig:
    prefix = config.state
    return replace(
        config,
        download_url=_get_optional_str_env(f"{prefix}_APL_DOWNLOAD_URL") or config.download_url,
        local_file_path=_get_optional_str_env(f"{prefix}_APL_LOCAL_PATH") or config.local_file_path,
        use_local_file=_get_bool_env(f"{prefix}_APL_USE_LOCAL_FILE", config.use_local_file),
        check_for_updates=_get_bool_env(f"{prefix}_APL_CHECK_FOR_UPDATES", config.check_for_updates),
        default_cron=_get_str_env(f"{prefix}_SYNC_CRON", config.default_cron),
        alert_threshold=max(1, _get_int_env(f"{prefix}_ALERT_THRESHOLD", default_threshold)),
    )


def _enabled_states() -> set[str] | None:
    raw = _get_optional_str_env("APL_ENABLED_STATES")
    if raw is None:
        return None
    return {token.strip().upper() for token in raw.split(",") if token.strip()}


@lru_cache(maxsize=1)
def get_jurisdictions() -> dict[str, JurisdictionConfig]:
    """
    Return enabled jurisdiction configs keyed by state code.
    """

    default_threshold = get_sync_settings().alert_threshold
    enabled = _enabled_states()
    return {
        config.state: _apply_env_overrides(config, default_threshold=default_threshold)
        for config in _BUILTIN_JURISDICTIONS
        if enabled is None or config.state in enabled
    }


def get_jurisdiction(state: str, registry: Mapping[str, JurisdictionConfig] | None = None) -> JurisdictionConfig:
    """
    Look up one jurisdiction config, raising UnknownJurisdictionError if absent.
    """

    configs = registry if registry is not None else get_jurisdictions()
    key = (state or "").strip().upper()
    try:
        return configs[key]
    except KeyError:
        raise UnknownJurisdictionError(key) from None


def known_states() -> tuple[str, ...]:
    return tuple(config.state for config in _BUILTIN_JURISDICTIONS)
