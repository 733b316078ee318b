import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence
from openai import OpenAI

from taskquery.config import config
from taskquery.errors import AnalysisError
from taskquery.extraction import _strip_reasoning, resolve_provider
from taskquery.task_schema import ParsedQuery, ScoredTask

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = (
    "You are a task assistant. You receive tasks already filtered and ranked for the user's query. "
    "Recommend what to focus on, referencing tasks only as [TASK_n]. Do not invent tasks."
)


class TaskAnalyst:
    """
    Downstream analysis collaborator: turns a ranked task list into a short
    narrative. Failures raise AnalysisError; the caller keeps its ranked list.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Optional[Any] = None):
        if client is not None:
            self.client = client
            self.model = model or config['groq_model']
        else:
            resolved_key, base_url, self.model = resolve_provider(api_key, model)
            self.client = OpenAI(api_key=resolved_key, base_url=base_url)

    def analyze(self, ranked: Sequence[ScoredTask], query: ParsedQuery, today: date,
                max_tasks: int = 30, timeout: Optional[float] = None) -> str:
        if not ranked:
            raise AnalysisError("nothing to analyze")

        shown = list(ranked)[:max_tasks]
        lines = [self.describe(i + 1, st, today) for i, st in enumerate(shown)]
        user_prompt = "\n".join([
            f"Query: {query.original_query}",
            f"Keywords: {', '.join(query.core_keywords) or '(none)'}",
            f"Filters: {query.filter_summary() or '(none)'}",
            f"Time horizon: {self._time_horizon(query)}",
            f"Today: {today.isoformat()}",
            "",
            f"Tasks ({len(shown)} of {len(ranked)}, most relevant first):",
            *lines,
            "",
            "Answer in the query's language. Keep it under 150 words.",
        ])

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=config['temperature'],
                max_tokens=config['max_tokens'],
                timeout=timeout or config['analysis_timeout'],
            )
            text = _strip_reasoning(response.choices[0].message.content or "")
        except Exception as e:
            raise AnalysisError(f"analysis call failed: {e}") from e

        if not text:
            raise AnalysisError("analysis returned no text")
        logger.info("[Analyst] ✓ Narrative for %d tasks (model=%s)", len(shown), self.model)
        return text

    def describe(self, index: int, st: ScoredTask, today: date) -> str:
        task = st.task
        parts = [f"[TASK_{index}] {task.text}"]
        if task.due_date is not None:
            due_in_days = (task.due_date - today).days
            if due_in_days < 0:
                parts.append(f"due {task.due_date.isoformat()} (overdue {-due_in_days}d)")
            elif due_in_days == 0:
                parts.append("due today")
            else:
                parts.append(f"due {task.due_date.isoformat()} (in {due_in_days}d)")
        if task.priority is not None:
            parts.append(f"P{task.priority}")
        if task.status_category or task.status_symbol not in (None, " "):
            parts.append(f"status {task.status_category or repr(task.status_symbol)}")
        if task.tags:
            parts.append(" ".join(f"#{t}" for t in task.tags))
        return " | ".join(parts)

    def _time_horizon(self, query: ParsedQuery) -> str:
        if query.time_context is None:
            return "(none)"
        return f"{query.time_context.term}: tasks due by {query.time_context.until.isoformat()} and overdue ones matter most"


def task_insights(ranked: Sequence[ScoredTask], today: date) -> Dict[str, Any]:
    """Cheap counts for the ranked list, shown alongside (or instead of) the narrative."""
    overdue = [st for st in ranked if st.task.due_date is not None and st.task.due_date < today]
    due_today = [st for st in ranked if st.task.due_date == today]
    urgent = [st for st in ranked if st.task.priority == 1]
    undated: List[ScoredTask] = [st for st in ranked if st.task.due_date is None]
    return {
        "total": len(ranked),
        "overdue": len(overdue),
        "due_today": len(due_today),
        "priority_1": len(urgent),
        "no_due_date": len(undated),
        "top": [st.task_id for st in list(ranked)[:5]],
    }
