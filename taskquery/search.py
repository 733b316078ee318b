from typing import List, Dict, Any, Optional, Protocol, Sequence
from dataclasses import dataclass, field
from datetime import datetime
import logging

from taskquery.date_utils import today_from
from taskquery.errors import AnalysisError, TaskSourceUnavailable
from taskquery.extraction import run_with_timeout
from taskquery.filtering import FilterResult, PropertyFilterEngine
from taskquery.intelligence import task_insights
from taskquery.interpreter import QueryInterpreter, QueryUnderstanding
from taskquery.quality import GateReport, QualityGate
from taskquery.ranking import MultiCriteriaRanker
from taskquery.scoring import RelevanceScorer, ScoreActivation
from taskquery.settings import SearchSettings
from taskquery.task_schema import ParsedQuery, ScoredTask, Task
from taskquery.vocabulary import is_generic

logger = logging.getLogger(__name__)


class TaskSource(Protocol):
    def fetch(self, hints: Dict[str, Any]) -> Sequence[Task]:
        ...


class Analyst(Protocol):
    def analyze(self, ranked: Sequence[ScoredTask], query: ParsedQuery, today, max_tasks: int = 30,
                timeout: Optional[float] = None) -> str:
        ...


@dataclass
class NearMiss:
    task_id: str
    text: str
    composite_score: float
    relevance_score: float
    excluded_by: str  # filter name, or 'quality' for gate rejections


@dataclass
class SearchOutcome:
    query: str
    parsed: ParsedQuery
    ranked: List[ScoredTask]
    display_sort: List[str]
    analysis_ranked: List[ScoredTask] = field(default_factory=list)
    analysis_sort: List[str] = field(default_factory=list)
    gate: Optional[GateReport] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    insights: Dict[str, Any] = field(default_factory=dict)
    narrative: Optional[str] = None
    reason: Optional[str] = None
    near_misses: List[NearMiss] = field(default_factory=list)

    @property
    def task_ids(self) -> List[str]:
        return [st.task_id for st in self.ranked]


class TaskSearchEngine:
    def __init__(
        self,
        settings: Optional[SearchSettings] = None,
        task_source: Optional[TaskSource] = None,
        understanding: Optional[QueryUnderstanding] = None,
        analyst: Optional[Analyst] = None,
    ):
        """
        Initialize the task search pipeline.

        Args:
            settings: Immutable pipeline configuration (defaults when omitted).
            task_source: Supplies the task snapshot when search() gets no tasks.
            understanding: Language-understanding collaborator (LLMQueryExtractor).
            analyst: Optional narrative collaborator (TaskAnalyst).
        """
        self.settings = settings or SearchSettings()
        self.task_source = task_source
        self.analyst = analyst
        self.interpreter = QueryInterpreter(self.settings, understanding)
        self.filters = PropertyFilterEngine(self.settings)
        self.scorer = RelevanceScorer(self.settings)
        self.gate = QualityGate(self.settings)
        self.ranker = MultiCriteriaRanker(self.settings)

    # -----------------------------
    # Pipeline
    # -----------------------------

    def search(
        self,
        query: str,
        tasks: Optional[Sequence[Task]] = None,
        now: Optional[datetime] = None,
        analyze: bool = True,
    ) -> SearchOutcome:
        """
        property filters -> keyword filter -> scoring -> quality gate -> ranking,
        then the optional analysis pass over the analysis ordering.
        """
        s = self.settings
        today = today_from(now)
        parsed = self.interpreter.interpret(query, today)
        snapshot = self._snapshot(parsed, tasks)

        filtered = self.filters.apply(snapshot, parsed, today)
        activation = ScoreActivation.resolve(parsed, [s.display_sort, s.analysis_sort], filtered.keyword_step_skipped)
        diagnostics = self._diagnostics(parsed, filtered, activation, len(snapshot))

        if not filtered.tasks:
            pool, pool_filtered = snapshot, filtered
            if tasks is None and any(self.source_hints(parsed).values()):
                # the source pre-filter hid everything; look at the unfiltered set for near misses
                pool = self._snapshot(parsed, None, hints={})
                pool_filtered = self.filters.apply(pool, parsed, today)
            display_sort = self.ranker.resolve(s.display_sort, activation.relevance)
            outcome = SearchOutcome(query=query, parsed=parsed, ranked=[], display_sort=display_sort, diagnostics=diagnostics)
            outcome.reason = self._empty_reason(pool_filtered, len(pool))
            outcome.near_misses = self._near_misses(pool, parsed, activation, pool_filtered, today)
            logger.info("[Search] ✗ %s", outcome.reason)
            return outcome

        scored = self.scorer.score(filtered.tasks, parsed, activation, today)
        passed, report = self.gate.apply(scored, parsed, activation)
        if report.fell_back:
            diagnostics["quality_fallback"] = f"{report.before} candidates, safety floor kept {report.after}"

        display_sort, ranked = self.ranker.rank_with(passed, s.display_sort, activation.relevance)
        analysis_sort, analysis_ranked = self.ranker.rank_with(passed, s.analysis_sort, activation.relevance)

        outcome = SearchOutcome(
            query=query,
            parsed=parsed,
            ranked=ranked,
            display_sort=display_sort,
            analysis_ranked=analysis_ranked,
            analysis_sort=analysis_sort,
            gate=report,
            diagnostics=diagnostics,
            insights=task_insights(ranked, today),
        )

        if analyze and self.analyst is not None:
            outcome.narrative = self._run_analysis(outcome, today)

        logger.info(
            "[Search] ✓ '%s': %d tasks -> %d filtered -> %d ranked (sort=%s)",
            query, len(snapshot), len(filtered.tasks), len(ranked), ",".join(display_sort),
        )
        return outcome

    def _snapshot(self, parsed: ParsedQuery, tasks: Optional[Sequence[Task]],
                  hints: Optional[Dict[str, Any]] = None) -> List[Task]:
        if tasks is not None:
            return list(tasks)
        if self.task_source is None:
            raise TaskSourceUnavailable("no task source configured and no tasks supplied")
        try:
            return list(self.task_source.fetch(self.source_hints(parsed) if hints is None else hints))
        except TaskSourceUnavailable:
            raise
        except Exception as e:
            raise TaskSourceUnavailable(f"task source failed: {e}") from e

    def source_hints(self, parsed: ParsedQuery) -> Dict[str, Any]:
        """
        Coarse pre-query for the task source. Only constraints the engine will
        enforce itself are passed down, so the pre-filter can never be stricter.
        """
        keywords = list(parsed.expanded_keywords)
        if parsed.is_vague and all(is_generic(k, self.filters.lexicon) for k in keywords):
            keywords = []
        return {"keywords": keywords, "tags": list(parsed.tags), "folder": parsed.folder}

    def _run_analysis(self, outcome: SearchOutcome, today) -> Optional[str]:
        s = self.settings
        try:
            return run_with_timeout(
                lambda: self.analyst.analyze(outcome.analysis_ranked, outcome.parsed, today,
                                             max_tasks=s.analysis_max_tasks, timeout=s.analysis_timeout),
                s.analysis_timeout,
                AnalysisError,
                "analysis",
            )
        except AnalysisError as e:
            logger.warning("[Search] ⚠ Analysis failed (%s); returning ranked list only", e)
            outcome.diagnostics["analysis_error"] = str(e)
            return None

    # -----------------------------
    # Diagnostics + empty results
    # -----------------------------

    def _diagnostics(self, parsed: ParsedQuery, filtered: FilterResult, activation: ScoreActivation, total: int) -> Dict[str, Any]:
        return {
            "parser": parsed.source,
            "parser_error": parsed.parser_error,
            "snapshot_size": total,
            "filters": [
                {"name": d.name, "detail": d.detail, "before": d.before, "after": d.after}
                for d in filtered.applied
            ],
            "keyword_step_skipped": filtered.keyword_step_skipped,
            "activation": {"relevance": activation.relevance, "dueDate": activation.due_date, "priority": activation.priority},
            "time_context": parsed.time_context.term if parsed.time_context else None,
        }

    def _empty_reason(self, filtered: FilterResult, total: int) -> str:
        if total == 0:
            return "The task source returned no tasks."
        step = filtered.emptied_by
        if step is None:
            return "No tasks matched the query."
        return f"No tasks matched: the {step.name} filter ({step.detail}) excluded all {step.before} remaining candidates."

    def _near_misses(self, snapshot: List[Task], parsed: ParsedQuery, activation: ScoreActivation,
                     filtered: FilterResult, today, limit: int = 5) -> List[NearMiss]:
        if not snapshot:
            return []
        scored = self.scorer.score(snapshot, parsed, activation, today)
        best = sorted(scored, key=lambda st: -st.composite_score)[:limit]
        return [
            NearMiss(
                task_id=st.task_id,
                text=st.task.text,
                composite_score=st.composite_score,
                relevance_score=st.relevance_score,
                excluded_by=filtered.excluded_by.get(st.task_id, "unknown"),
            )
            for st in best
        ]
