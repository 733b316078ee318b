# taskquery/ranking.py

from __future__ import annotations
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Sequence, Tuple

from taskquery.settings import SearchSettings, sort_tokens
from taskquery.task_schema import ScoredTask

logger = logging.getLogger(__name__)

STATUS_ORDER = {"inprogress": 0, "open": 1, "question": 2, "other": 3, "completed": 4, "cancelled": 5}
_FAR_FUTURE = date.max.toordinal()


class MultiCriteriaRanker:
    """
    Stable multi-key sort. Each criterion has one fixed direction:
      relevance     composite score, high first
      priority      level 1 first, no priority last
      dueDate       earliest first, no due date last
      created       newest first, no date last
      alphabetical  A-Z, case-insensitive
      status        in progress, open, ..., completed, cancelled
    """

    def __init__(self, settings: SearchSettings):
        self.settings = settings
        self._keys: Dict[str, Callable[[ScoredTask], Any]] = {
            "relevance": lambda st: -st.composite_score,
            "priority": lambda st: st.task.priority if st.task.priority is not None else 5,
            "dueDate": lambda st: (st.task.due_date is None, st.task.due_date.toordinal() if st.task.due_date else _FAR_FUTURE),
            "created": lambda st: (st.task.created_date is None, -st.task.created_date.toordinal() if st.task.created_date else 0),
            "alphabetical": lambda st: st.task.text.casefold(),
            "status": self._status_rank,
        }

    def resolve(self, spec: Sequence[str], has_keywords: bool) -> List[str]:
        """
        Replace 'auto', drop unknown names and duplicates (first wins).
        An empty result falls back to the single default criterion.
        """
        default = "relevance" if has_keywords else "dueDate"
        resolved: List[str] = []
        for name in sort_tokens(list(spec or ())):
            if name == "auto":
                name = default
            if not name or name in resolved:
                continue
            resolved.append(name)
        if not resolved:
            logger.debug("[Ranker] Sort spec %r unusable, defaulting to %s", spec, default)
            resolved = [default]
        return resolved

    def rank(self, scored: Sequence[ScoredTask], criteria: Sequence[str]) -> List[ScoredTask]:
        """Sort by criteria[0], ties broken by criteria[1], ...; remaining ties keep input order."""
        keys = [self._keys[c] for c in criteria if c in self._keys]
        if not keys:
            return list(scored)
        return sorted(scored, key=lambda st: tuple(k(st) for k in keys))

    def rank_with(self, scored: Sequence[ScoredTask], spec: Sequence[str], has_keywords: bool) -> Tuple[List[str], List[ScoredTask]]:
        criteria = self.resolve(spec, has_keywords)
        return criteria, self.rank(scored, criteria)

    def _status_rank(self, st: ScoredTask) -> int:
        category = st.task.status_category or self.settings.status_category(st.task.status_symbol) or "other"
        return STATUS_ORDER.get(category.lower(), len(STATUS_ORDER))
