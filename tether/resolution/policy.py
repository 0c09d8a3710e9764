"""Threshold policy mapping the best candidate to an action."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

from tether.errors import ConfigurationError
from tether.resolution.config import ResolutionConfig
from tether.resolution.models import Candidate


class PolicyAction(str, Enum):
    REUSE = "reuse"
    ASK = "ask"
    CREATE = "create"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class PolicyDecision:
    """What to do with a ranked candidate list.

    ``candidates`` holds the choices to surface for ASK, and the winner
    alone for REUSE.
    """

    action: PolicyAction
    candidates: Tuple[Candidate, ...] = ()
    best_score: Optional[float] = None

    @property
    def top(self) -> Optional[Candidate]:
        return self.candidates[0] if self.candidates else None


class DecisionPolicy:
    """Pure threshold policy.

    Score bands, with the default thresholds:

    - ``[0.9, 1.0]``: reuse the top candidate
    - ``[0.7, 0.9)``: ask a human, whether or not creation is allowed
    - ``[0.0, 0.7)`` or no candidates: create if allowed, else unresolved
    """

    def __init__(
        self,
        reuse_threshold: float = 0.9,
        consider_threshold: float = 0.7,
        max_choices: int = 3,
    ):
        if not 0.0 <= consider_threshold <= reuse_threshold <= 1.0:
            raise ConfigurationError(
                "Thresholds must satisfy 0 <= consider_threshold <= reuse_threshold <= 1, "
                f"got consider={consider_threshold}, reuse={reuse_threshold}"
            )
        if max_choices < 1:
            raise ConfigurationError("max_choices must be at least 1")
        self.reuse_threshold = reuse_threshold
        self.consider_threshold = consider_threshold
        self.max_choices = max_choices

    @classmethod
    def from_config(cls, config: ResolutionConfig, record_type: str) -> "DecisionPolicy":
        thresholds = config.thresholds_for(record_type)
        return cls(
            reuse_threshold=thresholds.reuse_threshold,
            consider_threshold=thresholds.consider_threshold,
            max_choices=config.max_choices,
        )

    def classify(self, score: float) -> PolicyAction:
        """Band a score: REUSE, ASK, or CREATE for the create path."""
        if score >= self.reuse_threshold:
            return PolicyAction.REUSE
        if score >= self.consider_threshold:
            return PolicyAction.ASK
        return PolicyAction.CREATE

    def decide(self, candidates: Sequence[Candidate], create_if_missing: bool) -> PolicyDecision:
        ranked = sorted(candidates, key=Candidate.sort_key)
        if not ranked:
            action = PolicyAction.CREATE if create_if_missing else PolicyAction.UNRESOLVED
            return PolicyDecision(action)

        top = ranked[0]
        action = self.classify(top.score)
        if action is PolicyAction.REUSE:
            return PolicyDecision(action, (top,), top.score)
        if action is PolicyAction.ASK:
            return PolicyDecision(action, tuple(ranked[:self.max_choices]), top.score)
        if not create_if_missing:
            return PolicyDecision(PolicyAction.UNRESOLVED, (), top.score)
        return PolicyDecision(PolicyAction.CREATE, (), top.score)
