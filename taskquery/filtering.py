# taskquery/filtering.py

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Sequence, Tuple

from taskquery.date_utils import period_bounds
from taskquery.settings import SearchSettings
from taskquery.task_schema import DueDateFilter, FilterDiagnostic, ParsedQuery, PriorityFilter, Task
from taskquery.vocabulary import generic_lexicon, is_generic

logger = logging.getLogger(__name__)

Predicate = Callable[[Task], bool]


@dataclass
class FilterResult:
    tasks: List[Task]
    applied: List[FilterDiagnostic] = field(default_factory=list)
    keyword_step_skipped: bool = False
    # name of the first filter that dropped each excluded task, by id
    excluded_by: dict = field(default_factory=dict)

    @property
    def emptied_by(self) -> Optional[FilterDiagnostic]:
        """The filter step that took a non-empty set to zero, if any."""
        for step in self.applied:
            if step.before > 0 and step.after == 0:
                return step
        return None


class PropertyFilterEngine:
    """
    Structured filters (AND across filters) followed by the keyword step
    (OR across expanded keywords). Input order is preserved throughout.
    """

    def __init__(self, settings: SearchSettings):
        self.settings = settings
        self.lexicon = generic_lexicon(settings)

    def apply(self, tasks: Sequence[Task], query: ParsedQuery, today: date) -> FilterResult:
        result = self.apply_properties(tasks, query, today)
        return self.apply_keywords(result, query)

    def apply_properties(self, tasks: Sequence[Task], query: ParsedQuery, today: date) -> FilterResult:
        result = FilterResult(tasks=list(tasks))
        for name, detail, predicate in self.property_predicates(query, today):
            self._run_step(result, name, detail, predicate)
        return result

    def apply_keywords(self, result: FilterResult, query: ParsedQuery) -> FilterResult:
        keywords = [k.lower() for k in query.expanded_keywords]
        if not keywords:
            result.keyword_step_skipped = True
            return result
        if query.is_vague and all(is_generic(k, self.lexicon) for k in keywords):
            logger.debug("[Filter] Vague query with only generic keywords, keyword step skipped")
            result.keyword_step_skipped = True
            return result

        def contains_any(task: Task) -> bool:
            text = task.text.lower()
            return any(k in text for k in keywords)

        self._run_step(result, "keywords", ", ".join(keywords[:8]), contains_any)
        return result

    def property_predicates(self, query: ParsedQuery, today: date) -> List[Tuple[str, str, Predicate]]:
        """(name, detail, predicate) for every structured filter present on the query."""
        steps: List[Tuple[str, str, Predicate]] = []
        if query.priority is not None:
            pf = query.priority
            steps.append(("priority", pf.mode if pf.mode != "values" else ",".join(map(str, pf.values)),
                          lambda t: matches_priority(t, pf)))
        if query.due_date is not None:
            df = query.due_date
            steps.append(("dueDate", df.term or df.kind, lambda t: matches_due_date(t, df, today)))
        if query.status:
            wanted = {s.lower() for s in query.status}
            steps.append(("status", ",".join(query.status),
                          lambda t: (self.status_of(t) or "").lower() in wanted))
        if query.tags:
            tags = [t.lower().lstrip("#") for t in query.tags]
            steps.append(("tags", ",".join(tags), lambda t: self.matches_tags(t, tags)))
        if query.folder:
            folder = query.folder.lower().strip("/")
            steps.append(("folder", folder, lambda t: self.matches_folder(t, folder)))
        return steps

    # -----------------------------
    # Individual predicates
    # -----------------------------

    def status_of(self, task: Task) -> Optional[str]:
        if task.status_category:
            return task.status_category
        return self.settings.status_category(task.status_symbol)

    def matches_tags(self, task: Task, wanted: List[str]) -> bool:
        if self.settings.tag_match == "exact":
            return any(tag in task.tags for tag in wanted)
        return any(w in tag for w in wanted for tag in task.tags)

    def matches_folder(self, task: Task, wanted: str) -> bool:
        path = (task.folder or "").lower().strip("/")
        if not path:
            return False
        if self.settings.folder_match == "exact":
            return path == wanted
        return wanted in path

    def _run_step(self, result: FilterResult, name: str, detail: str, predicate: Predicate):
        before = len(result.tasks)
        kept: List[Task] = []
        for task in result.tasks:
            if predicate(task):
                kept.append(task)
            else:
                result.excluded_by.setdefault(task.id, name)
        result.tasks = kept
        result.applied.append(FilterDiagnostic(name=name, before=before, after=len(kept), detail=detail))
        if before and not kept:
            logger.info("[Filter] ⚠ '%s' filter (%s) excluded all %d candidates", name, detail, before)


def matches_priority(task: Task, pf: PriorityFilter) -> bool:
    if pf.mode == "any":
        return task.priority is not None
    if pf.mode == "none":
        return task.priority is None
    return task.priority in pf.values


def matches_due_date(task: Task, df: DueDateFilter, today: date) -> bool:
    due = task.due_date
    if df.kind == "keyword":
        return any(_matches_due_keyword(due, kw, today) for kw in df.keywords)
    if due is None:
        return False
    if df.kind == "date":
        return due == df.on
    op, start = df.operator, df.start
    if op == "<=":
        return due <= start
    if op == "<":
        return due < start
    if op == ">=":
        return due >= start
    if op == ">":
        return due > start
    return start <= due <= df.end


def _matches_due_keyword(due: Optional[date], keyword: str, today: date) -> bool:
    if keyword == "none":
        return due is None
    if due is None:
        return False
    if keyword == "any":
        return True
    if keyword == "today":
        return due == today
    if keyword == "tomorrow":
        return (due - today).days == 1
    if keyword == "yesterday":
        return (today - due).days == 1
    if keyword == "overdue":
        return due < today
    if keyword == "future":
        return due > today
    bounds = period_bounds(keyword, today)
    if bounds is None:
        return False
    since, until = bounds
    return due <= until if since is None else since <= due <= until
