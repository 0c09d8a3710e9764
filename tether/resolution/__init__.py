"""Entity resolution: turn textual references into record ids.

Search the record store and semantic index, rank candidates, then reuse,
ask a human, or create, recursively for array items and for the
relationships of created records.
"""

from tether.resolution.candidates import CandidateStore, order_search_fields
from tether.resolution.config import ResolutionConfig, ThresholdOverride, Thresholds
from tether.resolution.discovery import discover_field_specs, select_search_source
from tether.resolution.engine import ResolutionEngine
from tether.resolution.models import (
    CREATE_NEW,
    ArrayFieldSpec,
    AwaitingChoice,
    Candidate,
    Created,
    FieldResolutionSpec,
    LogEntry,
    ResolutionContext,
    ResolutionDecision,
    ResolutionLog,
    Reused,
    Unresolved,
    UnresolvedReason,
)
from tether.resolution.nested import NestedArrayResolver
from tether.resolution.policy import DecisionPolicy, PolicyAction, PolicyDecision
from tether.resolution.prompts import (
    describe_choice,
    friendly_entity_name,
    parse_choice_reply,
    pluralize,
)
from tether.resolution.scoring import SimilarityScorer, string_similarity
from tether.resolution.semantic import SemanticCandidateSource
from tether.resolution.session import ResolutionSession
from tether.resolution.synthesis import RecordSynthesizer

__all__ = [
    "CREATE_NEW",
    "ArrayFieldSpec",
    "AwaitingChoice",
    "Candidate",
    "CandidateStore",
    "Created",
    "DecisionPolicy",
    "FieldResolutionSpec",
    "LogEntry",
    "NestedArrayResolver",
    "PolicyAction",
    "PolicyDecision",
    "RecordSynthesizer",
    "ResolutionConfig",
    "ResolutionContext",
    "ResolutionDecision",
    "ResolutionEngine",
    "ResolutionLog",
    "ResolutionSession",
    "Reused",
    "SemanticCandidateSource",
    "SimilarityScorer",
    "ThresholdOverride",
    "Thresholds",
    "Unresolved",
    "UnresolvedReason",
    "describe_choice",
    "discover_field_specs",
    "friendly_entity_name",
    "order_search_fields",
    "parse_choice_reply",
    "pluralize",
    "select_search_source",
    "string_similarity",
]
