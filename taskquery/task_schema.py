# taskquery/task_schema.py

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Literal, Dict, Any, List, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


PriorityMode = Literal["values", "any", "none"]
DueKeyword = Literal[
    "today", "tomorrow", "yesterday", "overdue", "future", "any", "none",
    "week", "next-week", "month", "next-month", "year",
]
RangeOperator = Literal["<=", "<", ">=", ">", "between"]
QuerySource = Literal["llm", "heuristic", "merged"]


class Task(BaseModel):
    """One note-embedded task, read-only for the length of a pipeline pass."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique task ID")
    text: str = Field(..., description="Task text as written in the note")
    status_symbol: Optional[str] = Field(default=" ", description="Raw checkbox marker, e.g. ' ', 'x', '/'")
    status_category: Optional[str] = Field(default=None, description="Pre-resolved category; wins over the symbol")

    priority: Optional[int] = Field(default=None, description="1 (most urgent) to 4")
    due_date: Optional[date] = None
    created_date: Optional[date] = None

    tags: Tuple[str, ...] = ()
    folder: Optional[str] = Field(default=None, description="Folder path of the source note")
    source_path: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, v):
        """Unrecognized priority values are treated as no priority."""
        if v is None or v == "":
            return None
        try:
            level = int(v)
        except (TypeError, ValueError):
            return {"highest": 1, "high": 1, "medium": 2, "low": 3, "lowest": 4}.get(str(v).strip().lower())
        return level if 1 <= level <= 4 else None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v):
        if not v:
            return ()
        if isinstance(v, str):
            v = [v]
        seen: List[str] = []
        for tag in v:
            t = str(tag).strip().lstrip("#").lower()
            if t and t not in seen:
                seen.append(t)
        return tuple(seen)

    def to_storage_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ── Structured filters ─────────────────────────────────────────────────────────

class PriorityFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: PriorityMode = "values"
    values: Tuple[int, ...] = ()

    @model_validator(mode="after")
    def check_values(self):
        if self.mode == "values":
            if not self.values or any(v not in (1, 2, 3, 4) for v in self.values):
                raise ValueError("priority filter values must be levels 1-4")
        return self


class DueDateFilter(BaseModel):
    """
    Exactly one shape is populated:
      kind="keyword": keywords (any-of, e.g. ("today", "overdue"))
      kind="date":    on (an exact day)
      kind="range":   operator + start (and end for 'between')
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["keyword", "date", "range"]
    keywords: Tuple[DueKeyword, ...] = ()
    on: Optional[date] = None
    operator: Optional[RangeOperator] = None
    start: Optional[date] = None
    end: Optional[date] = None
    term: Optional[str] = Field(default=None, description="Source expression, for diagnostics")

    @model_validator(mode="after")
    def check_shape(self):
        if self.kind == "keyword" and not self.keywords:
            raise ValueError("keyword due filter needs at least one keyword")
        if self.kind == "date" and self.on is None:
            raise ValueError("date due filter needs a date")
        if self.kind == "range":
            if self.operator is None or self.start is None:
                raise ValueError("range due filter needs an operator and a start date")
            if self.operator == "between":
                if self.end is None:
                    raise ValueError("'between' needs an end date")
                if self.end < self.start:
                    raise ValueError("range end precedes start")
        return self

    def window(self) -> Optional[Tuple[Optional[date], date]]:
        """(since, until) covered by an exact date or a closed-above range; None otherwise."""
        if self.kind == "date":
            return self.on, self.on
        if self.operator == "<=":
            return None, self.start
        if self.operator == "between":
            return self.start, self.end
        return None


class TimeContext(BaseModel):
    """A non-excluding time hint: prioritize tasks due on or before `until`."""
    model_config = ConfigDict(frozen=True)

    term: str
    until: date
    since: Optional[date] = None

    def window(self) -> Tuple[Optional[date], date]:
        return self.since, self.until


class ParsedQuery(BaseModel):
    """Immutable interpretation of one query."""
    model_config = ConfigDict(frozen=True)

    original_query: str = ""
    core_keywords: Tuple[str, ...] = ()
    expanded_keywords: Tuple[str, ...] = ()

    priority: Optional[PriorityFilter] = None
    due_date: Optional[DueDateFilter] = None
    status: Tuple[str, ...] = ()
    folder: Optional[str] = None
    tags: Tuple[str, ...] = ()

    is_vague: bool = False
    vagueness_ratio: float = 0.0
    vague_reason: Optional[str] = None
    time_context: Optional[TimeContext] = None

    confidence: float = 0.0
    detected_language: str = "en"
    source: QuerySource = "heuristic"
    parser_error: Optional[str] = None

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v):
        return max(0.0, min(1.0, v))

    @model_validator(mode="before")
    @classmethod
    def merge_core_into_expanded(cls, data):
        # Core keywords lead the expanded list.
        if isinstance(data, dict):
            core = list(data.get("core_keywords") or ())
            expanded = list(data.get("expanded_keywords") or ())
            data = dict(data)
            data["expanded_keywords"] = tuple(core + [k for k in expanded if k not in core])
        return data

    @model_validator(mode="after")
    def check_time_expression(self):
        if self.due_date is not None and self.time_context is not None:
            same_term = bool(self.due_date.term) and self.due_date.term == self.time_context.term
            if same_term or self.due_date.window() == self.time_context.window():
                raise ValueError(f"time expression '{self.time_context.term}' resolved to both a filter and a time context")
        return self

    @property
    def has_keywords(self) -> bool:
        return bool(self.core_keywords)

    @property
    def has_filters(self) -> bool:
        return any([self.priority, self.due_date, self.status, self.folder, self.tags])

    def filter_summary(self) -> Dict[str, Any]:
        return self.model_dump(include={"priority", "due_date", "status", "folder", "tags"}, exclude_none=True, mode="json")


# ── Scoring output ─────────────────────────────────────────────────────────────

@dataclass
class ScoredTask:
    task: Task
    relevance_score: float
    due_date_score: float
    priority_score: float
    composite_score: float
    matched_keywords: List[str] = field(default_factory=list)

    @property
    def task_id(self) -> str:
        return self.task.id


@dataclass
class FilterDiagnostic:
    name: str
    before: int
    after: int
    detail: Optional[str] = None

    @property
    def excluded(self) -> int:
        return self.before - self.after
