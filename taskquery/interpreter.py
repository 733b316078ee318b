# taskquery/interpreter.py

from __future__ import annotations
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import ValidationError

from taskquery.date_utils import parse_date_expression, period_bounds, week_range, month_range
from taskquery.errors import QueryParseError
from taskquery.extraction import LLMQueryPayload, run_with_timeout
from taskquery.query_parser import DUE_KEYWORD_ALIASES, DUE_KEYWORDS, HeuristicParse, QueryParser
from taskquery.settings import SearchSettings
from taskquery.task_schema import DueDateFilter, ParsedQuery, PriorityFilter, TimeContext
from taskquery.vocabulary import (
    dedupe_keywords,
    is_stop_word,
    static_equivalents,
    vagueness_ratio,
)

logger = logging.getLogger(__name__)

HEURISTIC_CONFIDENCE = 0.5


class QueryUnderstanding(Protocol):
    """Anything that can turn a query request into an LLM-shaped payload."""

    def parse_query(self, request: Dict[str, Any]) -> Union[LLMQueryPayload, Dict[str, Any]]:
        ...


class QueryInterpreter:
    """
    Raw query text -> ParsedQuery.

    The heuristic parser always runs. When a language-understanding collaborator
    is configured its reading is merged on top, with explicit syntax from the
    heuristic pass taking precedence. Any collaborator failure degrades to the
    heuristic result.
    """

    def __init__(self, settings: SearchSettings, understanding: Optional[QueryUnderstanding] = None):
        self.settings = settings
        self.understanding = understanding
        self.parser = QueryParser(settings)

    def interpret(self, query: str, today: date) -> ParsedQuery:
        heuristic = self.parser.parse(query, today)

        if self.understanding is None:
            return self._from_heuristic(query, heuristic)

        # Pure property queries ("p1 d:today #work") need no model
        if not heuristic.remainder:
            logger.debug("[Interpreter] Property-only query, skipping LLM")
            return self._from_heuristic(query, heuristic)

        try:
            payload = run_with_timeout(
                lambda: self.understanding.parse_query(self._build_request(query)),
                self.settings.llm_timeout,
                QueryParseError,
                "query-parse",
            )
            if not isinstance(payload, LLMQueryPayload):
                payload = LLMQueryPayload.model_validate(payload)
        except ValidationError as e:
            logger.warning("[Interpreter] ✗ Payload failed validation, using heuristic parse")
            return self._from_heuristic(query, heuristic, error=f"payload failed validation: {e.error_count()} error(s)")
        except QueryParseError as e:
            logger.warning("[Interpreter] ✗ %s, using heuristic parse", e)
            return self._from_heuristic(query, heuristic, error=str(e))

        return self._merge(query, heuristic, payload, today)

    def _build_request(self, query: str) -> Dict[str, Any]:
        return {
            "query": query,
            "languages": list(self.settings.languages),
            "max_equivalents": self.settings.max_equivalents,
            "expansion_enabled": self.settings.expansion_enabled,
            "vocabulary": self.parser.vocabulary.as_prompt_dict(),
            "timeout": self.settings.llm_timeout,
        }

    # -----------------------------
    # Heuristic-only result
    # -----------------------------

    def _from_heuristic(self, query: str, heuristic: HeuristicParse, error: Optional[str] = None) -> ParsedQuery:
        core = heuristic.core_keywords
        expansions: List[str] = []
        if self.settings.expansion_enabled:
            for keyword in core:
                expansions.extend(static_equivalents(keyword, self.settings.languages, self.settings.max_equivalents))
        recognized = bool(core) or heuristic.has_filters

        return ParsedQuery(
            original_query=query,
            core_keywords=tuple(core),
            expanded_keywords=tuple(self.expand(core, expansions)),
            priority=heuristic.priority,
            due_date=heuristic.due_date,
            status=tuple(heuristic.status),
            folder=heuristic.folder,
            tags=tuple(heuristic.tags),
            is_vague=heuristic.is_vague,
            vagueness_ratio=heuristic.vagueness_ratio,
            vague_reason="generic-word ratio" if heuristic.is_vague else None,
            time_context=heuristic.time_context,
            confidence=HEURISTIC_CONFIDENCE if recognized else 0.2,
            detected_language=heuristic.detected_language,
            source="heuristic",
            parser_error=error,
        )

    def expand(self, core: List[str], expansions: List[str]) -> List[str]:
        """
        Core keywords first, then equivalents; exact and substring-overlapping
        terms dropped, first seen wins, capped per core keyword.
        """
        if not self.settings.expansion_enabled:
            return list(core)
        cap = max(1, len(core)) * self.settings.max_equivalents * max(1, len(self.settings.languages))
        cleaned = [e for e in expansions if e and not is_stop_word(e)]
        merged = dedupe_keywords(cleaned, substring_overlap=True, keep=core)
        return merged[:len(core) + cap]

    # -----------------------------
    # Merge model + heuristic
    # -----------------------------

    def _merge(self, query: str, heuristic: HeuristicParse, payload: LLMQueryPayload, today: date) -> ParsedQuery:
        explicit = heuristic.explicit

        core_raw = [k.lower() for k in payload.coreKeywords if not is_stop_word(k)]
        core = dedupe_keywords(core_raw, substring_overlap=False) if core_raw else list(heuristic.core_keywords)

        priority = heuristic.priority if "priority" in explicit else self._priority_from_payload(payload) or heuristic.priority

        status: List[str] = list(heuristic.status) if "status" in explicit else []
        if not status:
            for value in payload.status:
                category = self.parser.resolve_status(value)
                if category and category not in status:
                    status.append(category)
            status = status or list(heuristic.status)

        tags = list(heuristic.tags) if "tags" in explicit else [t.lstrip("#").lower() for t in payload.tags] or list(heuristic.tags)
        folder = heuristic.folder if "folder" in explicit else payload.folder or heuristic.folder

        if "due_date" in explicit:
            due = heuristic.due_date
        else:
            due = self._due_from_payload(payload, today) or heuristic.due_date

        # Vagueness: an explicit model verdict with reasoning wins over the ratio
        ratio = vagueness_ratio(core, self.parser.lexicon)
        if payload.isVague is not None and payload.vagueReasoning:
            is_vague, reason = payload.isVague, payload.vagueReasoning
        else:
            is_vague = bool(core) and ratio >= self.settings.vague_threshold
            reason = "generic-word ratio" if is_vague else None

        time_context = self._time_context_from_payload(payload, today) or heuristic.time_context
        due, time_context = self._resolve_time_conflict(due, time_context, is_vague, explicit, today)

        expansions = [k for k in payload.keywords if k.lower() not in core]
        if not expansions and self.settings.expansion_enabled:
            for keyword in core:
                expansions.extend(static_equivalents(keyword, self.settings.languages, self.settings.max_equivalents))
        expanded = self.expand(core, expansions)

        understanding = payload.aiUnderstanding
        parsed = ParsedQuery(
            original_query=query,
            core_keywords=tuple(core),
            expanded_keywords=tuple(expanded),
            priority=priority,
            due_date=due,
            status=tuple(status),
            folder=folder,
            tags=tuple(dict.fromkeys(tags)),
            is_vague=is_vague,
            vagueness_ratio=ratio,
            vague_reason=reason,
            time_context=time_context,
            confidence=understanding.confidence,
            detected_language=understanding.detectedLanguage or heuristic.detected_language,
            source="merged" if explicit else "llm",
        )
        logger.info(
            "[Interpreter] ✓ %d core / %d expanded keywords, vague=%s, filters=%s",
            len(parsed.core_keywords), len(parsed.expanded_keywords), parsed.is_vague, parsed.filter_summary(),
        )
        return parsed

    def _priority_from_payload(self, payload: LLMQueryPayload) -> Optional[PriorityFilter]:
        if payload.priority is None:
            return None
        if payload.priority in ("any", "all"):
            return PriorityFilter(mode="any")
        if payload.priority == "none":
            return PriorityFilter(mode="none")
        if isinstance(payload.priority, list) and payload.priority:
            return PriorityFilter(mode="values", values=tuple(sorted(payload.priority)))
        return None

    def _due_from_payload(self, payload: LLMQueryPayload, today: date) -> Optional[DueDateFilter]:
        rng = payload.dueDateRange
        if rng is not None and rng.operator in {"<=", "<", ">=", ">", "between"} and rng.start:
            start = _range_anchor(rng.start, today)
            end = _range_anchor(rng.end, today) if rng.end else None
            if start is not None and (rng.operator != "between" or (end is not None and end >= start)):
                return DueDateFilter(kind="range", operator=rng.operator, start=start, end=end, term=f"{rng.operator} {rng.start}")

        if payload.dueDate:
            value = DUE_KEYWORD_ALIASES.get(payload.dueDate.lower(), payload.dueDate.lower())
            value = _CONTEXT_KEYS.get(value, value)
            if value in DUE_KEYWORDS:
                return DueDateFilter(kind="keyword", keywords=(value,), term=value)
            parsed = parse_date_expression(value, today)
            if parsed is not None:
                return DueDateFilter(kind="date", on=parsed, term=value)
        return None

    def _time_context_from_payload(self, payload: LLMQueryPayload, today: date) -> Optional[TimeContext]:
        if not payload.timeContext:
            return None
        key = _normalize_period(payload.timeContext)
        bounds = period_bounds(key, today)
        if bounds is None:
            return None
        since, until = bounds
        return TimeContext(term=key, until=until, since=since)

    def _resolve_time_conflict(self, due, time_context, is_vague: bool, explicit, today: date):
        """The same time expression may be a filter or a hint, never both."""
        if due is None or time_context is None:
            return due, time_context
        due_key, window = _normalize_period(due.term or ""), due.window()
        if due.kind == "keyword" and len(due.keywords) == 1:
            due_key = _normalize_period(due.keywords[0])
            window = period_bounds(due.keywords[0], today)
        if due_key != _normalize_period(time_context.term) and window != time_context.window():
            return due, time_context
        if is_vague and "due_date" not in explicit:
            return None, time_context
        return due, None


_CONTEXT_KEYS = {"this-week": "week", "this-month": "month", "this-year": "year"}


def _normalize_period(term: str) -> str:
    """thisWeek / this week / this_week / week -> 'this-week' style key."""
    key = re.sub(r"(?<=[a-z])(?=[A-Z])", "-", term.strip())
    key = re.sub(r"[\s_]+", "-", key).lower()
    return {"week": "this-week", "month": "this-month", "year": "this-year"}.get(key, key)


def _range_anchor(token: Optional[str], today: date) -> Optional[date]:
    """Dates, relative offsets and period edges such as 'end-of-week' or 'start-of-next-month'."""
    if not token:
        return None
    t = re.sub(r"[\s_]+", "-", token.strip().lower())
    m = re.match(r"^(start|end)-of-(this-|next-|last-)?(week|month)$", t)
    if m:
        offset = {"next-": 1, "last-": -1}.get(m.group(2) or "", 0)
        first, last = week_range(today, offset) if m.group(3) == "week" else month_range(today, offset)
        return first if m.group(1) == "start" else last
    return parse_date_expression(token, today)
