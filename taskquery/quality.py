# taskquery/quality.py

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from taskquery.scoring import ScoreActivation, max_possible_score
from taskquery.settings import SearchSettings
from taskquery.task_schema import ParsedQuery, ScoredTask

logger = logging.getLogger(__name__)

GatePredicate = Callable[[ScoredTask], bool]


@dataclass
class GateReport:
    mode: str                      # 'adaptive' or 'explicit'
    percent: float
    max_possible_score: float
    threshold: float
    minimum_relevance: Optional[float]
    before: int
    after: int
    fell_back: bool = False
    rejected: List[ScoredTask] = field(default_factory=list)


class QualityGate:
    """
    Composite-score threshold plus an optional minimum-relevance predicate,
    with a safety floor so a non-empty input never gates down to nothing.
    """

    def __init__(self, settings: SearchSettings):
        self.settings = settings

    def threshold(self, query: ParsedQuery, activation: ScoreActivation) -> Tuple[str, float, float, float]:
        """(mode, percent, maxPossibleScore, finalThreshold)"""
        max_score = max_possible_score(self.settings, activation)
        if self.settings.quality_threshold_pct > 0:
            mode, pct = "explicit", self.settings.quality_threshold_pct
        else:
            counted = len(query.core_keywords) if activation.relevance else 0
            mode, pct = "adaptive", self.settings.adaptive_pct(counted)
        return mode, pct, max_score, pct / 100.0 * max_score

    def predicates(self, query: ParsedQuery, activation: ScoreActivation) -> List[Tuple[str, GatePredicate]]:
        _, _, _, final_threshold = self.threshold(query, activation)
        checks: List[Tuple[str, GatePredicate]] = [
            ("quality", lambda st: st.composite_score >= final_threshold),
        ]
        if self.minimum_relevance(activation) is not None:
            floor = self.settings.minimum_relevance_pct
            checks.append(("minimum_relevance", lambda st: st.relevance_score >= floor))
        return checks

    def minimum_relevance(self, activation: ScoreActivation) -> Optional[float]:
        """Active only when enabled, non-zero, and relevance itself is active."""
        s = self.settings
        if s.minimum_relevance_enabled and s.minimum_relevance_pct > 0 and activation.relevance:
            return s.minimum_relevance_pct
        return None

    def apply(self, scored: Sequence[ScoredTask], query: ParsedQuery, activation: ScoreActivation) -> Tuple[List[ScoredTask], GateReport]:
        mode, pct, max_score, final_threshold = self.threshold(query, activation)
        checks = self.predicates(query, activation)

        passed: List[ScoredTask] = []
        rejected: List[ScoredTask] = []
        for st in scored:
            (passed if all(check(st) for _, check in checks) else rejected).append(st)

        report = GateReport(
            mode=mode, percent=pct, max_possible_score=max_score, threshold=final_threshold,
            minimum_relevance=self.minimum_relevance(activation),
            before=len(scored), after=len(passed), rejected=rejected,
        )

        floor = min(self.settings.safety_floor, len(scored))
        passed_count = len(passed)
        if passed_count < floor:
            keep = min(self.settings.fallback_top_k, len(scored))
            passed = self.top_k(scored, keep)
            kept_ids = {id(st) for st in passed}
            report.rejected = [st for st in scored if id(st) not in kept_ids]
            report.after = len(passed)
            report.fell_back = True
            logger.info(
                "[QualityGate] ⚠ Only %d/%d passed %.1f (%s %.0f%% of %.1f), keeping top %d",
                passed_count, len(scored),
                final_threshold, mode, pct, max_score, keep,
            )
        else:
            logger.debug("[QualityGate] %d/%d passed threshold %.2f", len(passed), len(scored), final_threshold)
        return passed, report

    def top_k(self, scored: Sequence[ScoredTask], k: int) -> List[ScoredTask]:
        """Top k by composite score, returned in input order."""
        ranked = sorted(range(len(scored)), key=lambda i: -scored[i].composite_score)[:k]
        return [scored[i] for i in sorted(ranked)]
