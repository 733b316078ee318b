# taskquery/scoring.py

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence

import numpy as np

from taskquery.settings import SearchSettings, sort_tokens
from taskquery.task_schema import ParsedQuery, ScoredTask, Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreActivation:
    """Which composite components can vary for this query. Inactive ones contribute zero."""
    relevance: bool
    due_date: bool
    priority: bool

    @classmethod
    def resolve(cls, query: ParsedQuery, sort_specs: Iterable[Sequence[str]],
                keyword_step_skipped: bool = False) -> "ScoreActivation":
        criteria = set()
        for spec in sort_specs:
            criteria.update(sort_tokens(list(spec)))
        # a skipped keyword step leaves relevance inactive
        has_keywords = query.has_keywords and not keyword_step_skipped
        # "auto" stands for relevance with keywords and dueDate without
        if "auto" in criteria:
            criteria.add("relevance" if has_keywords else "dueDate")
        return cls(
            relevance=has_keywords,
            due_date=query.due_date is not None or query.time_context is not None or "dueDate" in criteria,
            priority=query.priority is not None or "priority" in criteria,
        )


def max_possible_score(settings: SearchSettings, activation: ScoreActivation) -> float:
    """Analytic ceiling of the composite score for an activation pattern."""
    total = 0.0
    if activation.relevance:
        total += settings.max_relevance_score * settings.relevance_coefficient
    if activation.due_date:
        total += settings.due_date_scores.max_score * settings.due_date_coefficient
    if activation.priority:
        total += settings.priority_scores.max_score * settings.priority_coefficient
    return total


class RelevanceScorer:
    """
    Vectorized composite scoring over a candidate snapshot.

    Keyword hits are computed once as a (tasks x keywords) boolean matrix;
    every per-task score below is a column reduction of it.
    """

    def __init__(self, settings: SearchSettings):
        self.settings = settings

    def score(self, tasks: Sequence[Task], query: ParsedQuery, activation: ScoreActivation, today: date) -> List[ScoredTask]:
        if not tasks:
            return []

        s = self.settings
        core = [k.lower() for k in query.core_keywords]
        expanded = [k.lower() for k in query.expanded_keywords] or core

        texts = [t.text.lower() for t in tasks]
        hits = self.keyword_matrix(texts, expanded)
        core_idx = [expanded.index(k) for k in core if k in expanded]

        relevance = self.relevance_scores(hits, core_idx, len(core), len(expanded))
        due = self.due_date_scores([t.due_date for t in tasks], today)
        prio = np.array([s.priority_scores.for_level(t.priority) for t in tasks], dtype=float)

        weights = np.array([
            s.relevance_coefficient if activation.relevance else 0.0,
            s.due_date_coefficient if activation.due_date else 0.0,
            s.priority_coefficient if activation.priority else 0.0,
        ])
        composite = np.column_stack([relevance, due, prio]) @ weights

        out: List[ScoredTask] = []
        for i, task in enumerate(tasks):
            matched = [expanded[j] for j in np.flatnonzero(hits[i])] if hits.size else []
            out.append(ScoredTask(
                task=task,
                relevance_score=round(float(relevance[i]), 6),
                due_date_score=float(due[i]),
                priority_score=float(prio[i]),
                composite_score=round(float(composite[i]), 6),
                matched_keywords=matched,
            ))
        logger.debug("[Scorer] Scored %d tasks (activation=%s)", len(out), activation)
        return out

    def keyword_matrix(self, texts: List[str], keywords: List[str]) -> np.ndarray:
        hits = np.zeros((len(texts), len(keywords)), dtype=bool)
        for j, keyword in enumerate(keywords):
            if keyword:
                hits[:, j] = [keyword in text for text in texts]
        return hits

    def relevance_scores(self, hits: np.ndarray, core_idx: List[int], n_core: int, n_all: int) -> np.ndarray:
        """(coreRatio * coreBonus + allRatio) * 100, bounded by (1 + coreBonus) * 100."""
        n = hits.shape[0]
        if n_core == 0 or n_all == 0:
            return np.zeros(n)
        core_ratio = hits[:, core_idx].sum(axis=1) / max(1, n_core) if core_idx else np.zeros(n)
        all_ratio = hits.sum(axis=1) / max(1, n_all)
        return (core_ratio * self.settings.core_bonus + all_ratio * 1.0) * 100.0

    def due_date_scores(self, due_dates: List[Optional[date]], today: date) -> np.ndarray:
        """overdue > today > within soon_days > within month_days > later > none."""
        cfg = self.settings.due_date_scores
        days = np.array([(d - today).days if d is not None else np.nan for d in due_dates], dtype=float)
        missing = np.isnan(days)
        filled = np.where(missing, 0.0, days)
        return np.select(
            [missing, filled < 0, filled == 0, filled <= cfg.soon_days, filled <= cfg.month_days],
            [cfg.none, cfg.overdue, cfg.today, cfg.soon, cfg.month],
            default=cfg.later,
        )
