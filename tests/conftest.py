"""
Shared pytest fixtures: an in-memory SQLite APL store and jurisdiction configs.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401 - registers APL models on Base.metadata
from app.domain.apl import APLDataSource
from app.jurisdictions import (
    CONDUENT_COLUMN_ALIASES,
    FIS_COLUMN_ALIASES,
    STATE_COLUMN_ALIASES,
    JurisdictionConfig,
    RolloutPhase,
)
from db.base import Base
from db.session import build_session_factory


@pytest.fixture()
def engine() -> Iterator[Engine]:
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def mi_config() -> JurisdictionConfig:
    return JurisdictionConfig(
        state="MI",
        name="Michigan",
        data_source=APLDataSource.FIS,
        timezone="America/Detroit",
        default_cron="0 2 * * *",
        column_aliases=FIS_COLUMN_ALIASES,
    )


@pytest.fixture()
def nc_config() -> JurisdictionConfig:
    return JurisdictionConfig(
        state="NC",
        name="North Carolina",
        data_source=APLDataSource.CONDUENT,
        timezone="America/New_York",
        default_cron="0 3 * * *",
        column_aliases=CONDUENT_COLUMN_ALIASES,
        allow_csv_fallback=True,
    )


@pytest.fixture()
def fl_config() -> JurisdictionConfig:
    return JurisdictionConfig(
        state="FL",
        name="Florida",
        data_source=APLDataSource.FIS,
        timezone="America/New_York",
        default_cron="0 3 * * mon",
        column_aliases=FIS_COLUMN_ALIASES,
        allow_csv_fallback=True,
        rollout_phases=(
            RolloutPhase(
                label="phased_rollout",
                start=date(2025, 10, 1),
                end=date(2026, 3, 31),
                cron="0 3 * * *",
            ),
        ),
        reject_artificial_dyes=True,
        track_contract_formula=True,
        contract_start_date=date(2026, 2, 1),
    )


@pytest.fixture()
def or_config() -> JurisdictionConfig:
    return JurisdictionConfig(
        state="OR",
        name="Oregon",
        data_source=APLDataSource.STATE,
        timezone="America/Los_Angeles",
        default_cron="0 4 * * *",
        column_aliases=STATE_COLUMN_ALIASES,
        allow_csv_fallback=True,
        track_organic_local=True,
    )
