"""Configuration for the resolution engine."""

from dataclasses import dataclass, field
from typing import Dict, Optional

from tether.errors import ConfigurationError

PARTIAL_SCORING_MODES = ("constant", "fuzzy")


@dataclass(frozen=True)
class Thresholds:
    """Effective thresholds for one record type."""

    reuse_threshold: float
    consider_threshold: float
    partial_match_score: float


@dataclass
class ThresholdOverride:
    """Per-record-type replacement for any of the global thresholds."""

    reuse_threshold: Optional[float] = None
    consider_threshold: Optional[float] = None
    partial_match_score: Optional[float] = None


def _check_thresholds(label: str, reuse: float, consider: float, partial: float) -> None:
    for name, value in (
        ("reuse_threshold", reuse),
        ("consider_threshold", consider),
        ("partial_match_score", partial),
    ):
        if not 0.0 <= value <= 1.0:
            raise ConfigurationError(f"{label}: {name} must be within [0, 1], got {value}")
    if consider > reuse:
        raise ConfigurationError(
            f"{label}: consider_threshold ({consider}) cannot exceed reuse_threshold ({reuse})"
        )


@dataclass
class ResolutionConfig:
    """Configuration for the resolution engine.

    Attributes:
        reuse_threshold: Minimum score at which the top candidate is reused
            without asking anyone
        consider_threshold: Minimum score at which candidates are surfaced
            to a human instead of creating a new record
        partial_match_score: Score given to substring (non-exact) store matches
        partial_scoring: 'constant' uses partial_match_score for every partial
            match, 'fuzzy' scores partial matches by string similarity
        max_choices: Maximum number of candidates attached to AwaitingChoice
        semantic_top_k: Number of hits requested from semantic indexes
        candidate_limit: Maximum rows read from the record store per field
        parallel_search: Run store and semantic searches concurrently
        max_creation_retries: Fresh resolutions allowed after a creation conflict
        normalize_created_names: Tidy whitespace and casing of synthesized names
        record_type_overrides: Threshold overrides keyed by record type
    """
    reuse_threshold: float = 0.9
    consider_threshold: float = 0.7
    partial_match_score: float = 0.6
    partial_scoring: str = "constant"
    max_choices: int = 3
    semantic_top_k: int = 5
    candidate_limit: int = 20
    parallel_search: bool = False
    max_creation_retries: int = 1
    normalize_created_names: bool = False
    record_type_overrides: Dict[str, ThresholdOverride] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_thresholds(
            "ResolutionConfig",
            self.reuse_threshold,
            self.consider_threshold,
            self.partial_match_score,
        )
        if self.partial_scoring not in PARTIAL_SCORING_MODES:
            raise ConfigurationError(
                f"Unknown partial_scoring mode: {self.partial_scoring!r} "
                f"(expected one of {', '.join(PARTIAL_SCORING_MODES)})"
            )
        if self.max_choices < 1:
            raise ConfigurationError("max_choices must be at least 1")
        if self.max_creation_retries < 0:
            raise ConfigurationError("max_creation_retries cannot be negative")
        for record_type in self.record_type_overrides:
            thresholds = self.thresholds_for(record_type)
            _check_thresholds(
                f"override for {record_type!r}",
                thresholds.reuse_threshold,
                thresholds.consider_threshold,
                thresholds.partial_match_score,
            )

    def thresholds_for(self, record_type: str) -> Thresholds:
        """Return the thresholds in effect for ``record_type``."""
        override = self.record_type_overrides.get(record_type)
        if override is None:
            return Thresholds(
                self.reuse_threshold,
                self.consider_threshold,
                self.partial_match_score,
            )
        return Thresholds(
            reuse_threshold=(
                override.reuse_threshold
                if override.reuse_threshold is not None
                else self.reuse_threshold
            ),
            consider_threshold=(
                override.consider_threshold
                if override.consider_threshold is not None
                else self.consider_threshold
            ),
            partial_match_score=(
                override.partial_match_score
                if override.partial_match_score is not None
                else self.partial_match_score
            ),
        )
