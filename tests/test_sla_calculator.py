"""Tests for SLA arithmetic and the lifecycle policy model."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from civicdesk.config import Profession, SLABand
from civicdesk.complaints.domain import LifecycleConfig, SLACalculator

pytestmark = pytest.mark.unit

T0 = datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)


def test_due_at_is_created_at_plus_sla_hours():
    assert SLACalculator.compute_due_at(T0, 48) == T0 + timedelta(hours=48)
    assert SLACalculator.compute_due_at(T0, 0.5) == T0 + timedelta(minutes=30)


def test_ratio_runs_from_zero_to_one_over_the_window():
    due = T0 + timedelta(hours=10)
    assert SLACalculator.sla_ratio(T0, due, T0) == 0.0
    assert SLACalculator.sla_ratio(T0, due, T0 + timedelta(hours=7.5)) == pytest.approx(0.75)
    assert SLACalculator.sla_ratio(T0, due, due) == pytest.approx(1.0)
    assert SLACalculator.sla_ratio(T0, due, T0 + timedelta(hours=10.5)) == pytest.approx(1.05)


def test_ratio_is_none_without_a_usable_window():
    assert SLACalculator.sla_ratio(T0, None, T0) is None
    assert SLACalculator.sla_ratio(T0, T0, T0 + timedelta(hours=1)) is None
    assert SLACalculator.sla_ratio(T0, T0 - timedelta(hours=1), T0) is None


@pytest.mark.parametrize(
    "ratio,band",
    [
        (None, SLABand.ON_TRACK),
        (0.0, SLABand.ON_TRACK),
        (0.74, SLABand.ON_TRACK),
        (0.75, SLABand.WARNING),
        (0.99, SLABand.WARNING),
        (1.0, SLABand.BREACHED),
        (3.2, SLABand.BREACHED),
    ],
)
def test_classify_bands(ratio, band):
    assert SLACalculator.classify(ratio, 0.75, 1.0) == band


def test_remaining_seconds_never_negative():
    due = T0 + timedelta(hours=1)
    assert SLACalculator.remaining_seconds(due, T0) == 3600
    assert SLACalculator.remaining_seconds(due, due + timedelta(minutes=5)) == 0.0


def test_default_policy():
    config = LifecycleConfig()
    assert config.default_sla_hours == 48
    assert config.warning_ratio == 0.75
    assert config.escalation_ratio == 1.0
    assert "leak" in config.keywords_for(Profession.PLUMBER)
    assert config.keywords_for(Profession.OTHER) == []


def test_keyword_table_is_lowercased_and_missing_professions_are_empty():
    config = LifecycleConfig(profession_keywords={"Plumber": ["  Water ", "PIPE"]})
    assert config.keywords_for(Profession.PLUMBER) == ["water", "pipe"]
    assert config.keywords_for(Profession.ELECTRICIAN) == []


def test_unknown_profession_in_keyword_table_is_rejected():
    with pytest.raises(ValidationError):
        LifecycleConfig(profession_keywords={"Astronaut": ["rocket"]})


def test_warning_must_precede_escalation():
    with pytest.raises(ValidationError):
        LifecycleConfig(warning_ratio=1.0, escalation_ratio=1.0)


def test_policy_is_immutable():
    config = LifecycleConfig()
    with pytest.raises(ValidationError):
        config.warning_ratio = 0.5
