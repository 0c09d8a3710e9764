"""Tests for the threshold decision policy."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tether.errors import ConfigurationError
from tether.resolution import (
    Candidate,
    DecisionPolicy,
    PolicyAction,
    ResolutionConfig,
)
from tether.resolution.config import ThresholdOverride


def _candidates(*scores):
    return [
        Candidate(id=index + 1, data={"name": f"c{index}"}, score=score, source="exact")
        for index, score in enumerate(scores)
    ]


scores = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)


@given(scores)
def test_threshold_bands_partition_the_score_range(score: float) -> None:
    action = DecisionPolicy().classify(score)

    in_reuse = score >= 0.9
    in_ask = 0.7 <= score < 0.9
    in_create = score < 0.7
    assert [in_reuse, in_ask, in_create].count(True) == 1
    assert (action is PolicyAction.REUSE) == in_reuse
    assert (action is PolicyAction.ASK) == in_ask
    assert (action is PolicyAction.CREATE) == in_create


@given(st.floats(min_value=0.7, max_value=0.9, exclude_max=True), st.booleans())
def test_medium_confidence_never_reuses(score: float, create_if_missing: bool) -> None:
    decision = DecisionPolicy().decide(_candidates(score, 0.2), create_if_missing)

    assert decision.action is PolicyAction.ASK


def test_boundaries() -> None:
    policy = DecisionPolicy()

    assert policy.classify(0.9) is PolicyAction.REUSE
    assert policy.classify(0.8999) is PolicyAction.ASK
    assert policy.classify(0.7) is PolicyAction.ASK
    assert policy.classify(0.6999) is PolicyAction.CREATE


def test_no_candidates_creates_only_when_allowed() -> None:
    policy = DecisionPolicy()

    assert policy.decide([], True).action is PolicyAction.CREATE
    assert policy.decide([], False).action is PolicyAction.UNRESOLVED


def test_low_score_without_create_is_unresolved() -> None:
    decision = DecisionPolicy().decide(_candidates(0.4), False)

    assert decision.action is PolicyAction.UNRESOLVED
    assert decision.best_score == 0.4


def test_reuse_returns_top_candidate() -> None:
    decision = DecisionPolicy().decide(_candidates(0.6, 0.95), False)

    assert decision.action is PolicyAction.REUSE
    assert decision.top.id == 2


def test_ask_surfaces_at_most_three_candidates_descending() -> None:
    decision = DecisionPolicy().decide(_candidates(0.72, 0.85, 0.8, 0.3, 0.75), True)

    assert decision.action is PolicyAction.ASK
    assert [c.score for c in decision.candidates] == [0.85, 0.8, 0.75]


def test_invalid_thresholds_raise() -> None:
    with pytest.raises(ConfigurationError):
        DecisionPolicy(reuse_threshold=0.6, consider_threshold=0.7)
    with pytest.raises(ConfigurationError):
        DecisionPolicy(reuse_threshold=1.5)
    with pytest.raises(ConfigurationError):
        ResolutionConfig(consider_threshold=0.95)


def test_per_record_type_overrides() -> None:
    config = ResolutionConfig(
        record_type_overrides={"product": ThresholdOverride(reuse_threshold=0.97)},
    )

    product_policy = DecisionPolicy.from_config(config, "product")
    customer_policy = DecisionPolicy.from_config(config, "customer")

    assert product_policy.classify(0.95) is PolicyAction.ASK
    assert customer_policy.classify(0.95) is PolicyAction.REUSE


def test_invalid_override_raises() -> None:
    with pytest.raises(ConfigurationError):
        ResolutionConfig(
            record_type_overrides={"product": ThresholdOverride(consider_threshold=0.95)},
        )
