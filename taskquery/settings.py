# taskquery/settings.py

from __future__ import annotations
import os
from typing import Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskquery.config import config


SORT_CRITERIA = ("relevance", "dueDate", "priority", "created", "alphabetical", "status", "auto")

DEFAULT_STATUS_MAPPING: Dict[str, Tuple[str, ...]] = {
    "open": (" ",),
    "completed": ("x", "X"),
    "inProgress": ("/", "~"),
    "cancelled": ("-",),
    "question": ("?",),
}


class DueDateScores(BaseModel):
    """Sub-scores for the due-date component, most urgent first."""
    model_config = ConfigDict(frozen=True)

    overdue: float = 1.5
    today: float = 1.2
    soon: float = 1.0
    month: float = 0.5
    later: float = 0.2
    none: float = 0.1

    soon_days: int = Field(default=7, ge=1)
    month_days: int = Field(default=30, ge=2)

    @model_validator(mode="after")
    def check_ordering(self):
        ladder = [self.overdue, self.today, self.soon, self.month, self.later, self.none]
        if any(a <= b for a, b in zip(ladder, ladder[1:])):
            raise ValueError("due date scores must be strictly decreasing: overdue > today > soon > month > later > none")
        if self.month_days <= self.soon_days:
            raise ValueError("month_days must be greater than soon_days")
        return self

    @property
    def max_score(self) -> float:
        return self.overdue


class PriorityScores(BaseModel):
    """Sub-scores for priority levels 1 (most urgent) through 4, plus tasks with no priority."""
    model_config = ConfigDict(frozen=True)

    p1: float = 1.0
    p2: float = 0.75
    p3: float = 0.5
    p4: float = 0.2
    none: float = 0.1

    @model_validator(mode="after")
    def check_ordering(self):
        ladder = [self.p1, self.p2, self.p3, self.p4, self.none]
        if any(a <= b for a, b in zip(ladder, ladder[1:])):
            raise ValueError("priority scores must be strictly decreasing from p1 to none")
        return self

    def for_level(self, level: Optional[int]) -> float:
        return {1: self.p1, 2: self.p2, 3: self.p3, 4: self.p4}.get(level, self.none)

    @property
    def max_score(self) -> float:
        return self.p1


class SearchSettings(BaseModel):
    """
    Immutable configuration threaded through every pipeline stage.

    Nothing in the pipeline reads module-level state; a query is a pure
    function of (task snapshot, query text, SearchSettings, reference date)
    plus whatever the collaborators answer.
    """
    model_config = ConfigDict(frozen=True)

    # Composite coefficients
    relevance_coefficient: float = Field(default=20.0, ge=0)
    due_date_coefficient: float = Field(default=4.0, ge=0)
    priority_coefficient: float = Field(default=1.0, ge=0)
    core_bonus: float = Field(default=0.2, ge=0, le=1)

    due_date_scores: DueDateScores = DueDateScores()
    priority_scores: PriorityScores = PriorityScores()

    # Quality gate: 0 means adaptive, otherwise a percentage of the max possible score
    quality_threshold_pct: float = Field(default=0.0, ge=0, le=100)
    adaptive_steps: Tuple[Tuple[int, float], ...] = ((0, 0.0), (1, 30.0), (2, 25.0), (4, 20.0), (6, 15.0))
    adaptive_min_pct: float = Field(default=0.0, ge=0, le=100)
    adaptive_max_pct: float = Field(default=50.0, ge=0, le=100)
    safety_floor: int = Field(default=5, ge=0)
    fallback_top_k: int = Field(default=20, ge=1)

    # Secondary gate on relevance alone, in relevance-score units (0..(1+core_bonus)*100)
    minimum_relevance_enabled: bool = False
    minimum_relevance_pct: float = Field(default=0.0, ge=0, le=200)

    display_sort: Tuple[str, ...] = ("auto", "dueDate", "priority")
    analysis_sort: Tuple[str, ...] = ("relevance", "dueDate", "priority")

    # Query understanding
    languages: Tuple[str, ...] = ("English", "中文")
    expansion_enabled: bool = True
    max_equivalents: int = Field(default=5, ge=0)
    vague_threshold: float = Field(default=0.7, ge=0, le=1)
    generic_words: Tuple[str, ...] = ()
    user_property_terms: Dict[str, Dict[str, Tuple[str, ...]]] = Field(default_factory=dict)
    status_mapping: Dict[str, Tuple[str, ...]] = Field(default_factory=lambda: dict(DEFAULT_STATUS_MAPPING))

    tag_match: Literal["exact", "substring"] = "exact"
    folder_match: Literal["exact", "substring"] = "substring"

    # Collaborators
    llm_timeout: float = Field(default=config['llm_timeout'], gt=0)
    analysis_timeout: float = Field(default=config['analysis_timeout'], gt=0)
    analysis_max_tasks: int = Field(default=30, ge=1)

    @field_validator("adaptive_steps")
    @classmethod
    def sort_steps(cls, v):
        steps = tuple(sorted((int(k), float(p)) for k, p in v))
        if not steps:
            raise ValueError("adaptive_steps needs at least one step")
        return steps

    @field_validator("display_sort", "analysis_sort", mode="before")
    @classmethod
    def split_sort(cls, v):
        if isinstance(v, str):
            return tuple(s.strip() for s in v.split(",") if s.strip())
        return v

    @model_validator(mode="after")
    def check_gate(self):
        if self.adaptive_min_pct > self.adaptive_max_pct:
            raise ValueError("adaptive_min_pct must not exceed adaptive_max_pct")
        if self.fallback_top_k < self.safety_floor:
            raise ValueError("fallback_top_k must be at least safety_floor")
        return self

    # -----------------------------
    # Derived values
    # -----------------------------

    @property
    def max_relevance_score(self) -> float:
        return (1.0 + self.core_bonus) * 100.0

    def adaptive_pct(self, core_keyword_count: int) -> float:
        """Step function lookup: the last step whose min count is <= the keyword count wins."""
        pct = self.adaptive_steps[0][1]
        for min_count, step_pct in self.adaptive_steps:
            if core_keyword_count >= min_count:
                pct = step_pct
        return max(self.adaptive_min_pct, min(self.adaptive_max_pct, pct))

    def status_category(self, symbol: Optional[str]) -> Optional[str]:
        if symbol is None:
            return None
        for category, symbols in self.status_mapping.items():
            if symbol in symbols:
                return category
        return "other"

    @classmethod
    def from_env(cls, **overrides) -> "SearchSettings":
        """Defaults, then TASKQUERY_* environment overrides, then explicit keyword overrides."""
        env: Dict[str, object] = {}
        float_keys = {
            "TASKQUERY_RELEVANCE_COEFFICIENT": "relevance_coefficient",
            "TASKQUERY_DUE_DATE_COEFFICIENT": "due_date_coefficient",
            "TASKQUERY_PRIORITY_COEFFICIENT": "priority_coefficient",
            "TASKQUERY_CORE_BONUS": "core_bonus",
            "TASKQUERY_QUALITY_THRESHOLD": "quality_threshold_pct",
            "TASKQUERY_MIN_RELEVANCE": "minimum_relevance_pct",
            "TASKQUERY_VAGUE_THRESHOLD": "vague_threshold",
        }
        for var, field in float_keys.items():
            raw = os.getenv(var)
            if raw:
                env[field] = float(raw)
        if os.getenv("TASKQUERY_MIN_RELEVANCE"):
            env["minimum_relevance_enabled"] = env.get("minimum_relevance_pct", 0) > 0
        if os.getenv("TASKQUERY_LANGUAGES"):
            env["languages"] = tuple(s.strip() for s in os.environ["TASKQUERY_LANGUAGES"].split(",") if s.strip())
        if os.getenv("TASKQUERY_EXPANSION"):
            env["expansion_enabled"] = os.environ["TASKQUERY_EXPANSION"].lower() in {"1", "true", "yes", "on"}
        if os.getenv("TASKQUERY_SORT"):
            env["display_sort"] = os.environ["TASKQUERY_SORT"]
        env.update(overrides)
        return cls(**env)


def sort_tokens(values: List[str]) -> List[str]:
    """Lowercase-insensitive canonicalization of sort criterion names; unknown names become ''."""
    canonical = {c.lower(): c for c in SORT_CRITERIA}
    canonical.update({"due": "dueDate", "duedate": "dueDate", "due_date": "dueDate", "alpha": "alphabetical"})
    return [canonical.get(str(v).strip().lower(), "") for v in values]
