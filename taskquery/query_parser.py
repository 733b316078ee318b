# taskquery/query_parser.py

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Set, Tuple

from taskquery.date_utils import (
    MONTH_PATTERN,
    WEEKDAY_PATTERN,
    parse_date_expression,
    period_bounds,
)
from taskquery.settings import SearchSettings
from taskquery.task_schema import DueDateFilter, PriorityFilter, TimeContext
from taskquery.vocabulary import (
    PropertyVocabulary,
    contains_cjk,
    dedupe_keywords,
    detect_language,
    generic_lexicon,
    is_generic,
    is_stop_word,
    split_words,
    vagueness_ratio,
)

logger = logging.getLogger(__name__)


DUE_KEYWORDS = {
    "today", "tomorrow", "yesterday", "overdue", "future", "any", "none",
    "week", "next-week", "month", "next-month", "year",
}
DUE_KEYWORD_ALIASES = {
    "all": "any", "nodate": "none", "no-date": "none", "this-week": "week", "thisweek": "week",
    "nextweek": "next-week", "this-month": "month", "thismonth": "month", "nextmonth": "next-month",
    "upcoming": "future", "later": "future", "late": "overdue",
}
# Levels that name a priority on their own, without "priority" next to them.
STANDALONE_PRIORITY_TERMS = {"urgent", "critical", "紧急", "brådskande", "kritisk"}
PERIOD_TOKENS = {"this-week", "next-week", "last-week", "this-month", "next-month", "last-month", "this-year", "last-year"}
TIME_KEYS = {"today", "tomorrow", "week", "next-week", "month", "next-month", "last-week", "last-month"}
# Shorthand for s: syntax only, never matched in free text.
STATUS_ALIASES = {"done": "completed", "todo": "open", "inprogress": "inProgress", "doing": "inProgress", "canceled": "cancelled"}
# Everyday words that only name a status next to a marker: "status open", "closed state".
MARKED_STATUS_TERMS = {"open", "closed", "resolved", "dropped", "finished", "pending", "abandoned"}

# One date-ish token: ISO, US, month-day, relative, or a named day/period.
DATE_TOKEN = (
    r"(?:\d{4}-\d{1,2}-\d{1,2}|\d{1,2}/\d{1,2}(?:/\d{2,4})?|\+\d+[dwm]"
    r"|" + MONTH_PATTERN + r"\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s*\d{4})?"
    r"|next\s+" + WEEKDAY_PATTERN +
    r"|in\s+\d+\s+(?:days?|weeks?|months?)"
    r"|(?:this|next|last)\s+(?:week|month|year)|today|tomorrow|yesterday)"
)

TAG_RE = re.compile(r"(?<![\w&])#([^\s#,]+)")
FOLDER_RE = re.compile(r"(?:\b(?:in\s+)?(?:folder|path)\s*[:=]\s*|\bin\s+folder\s+)(\"[^\"]+\"|'[^']+'|[^\s]+)", re.IGNORECASE)
PRIORITY_SHORT_RE = re.compile(r"(?<![\w:])p([1-4])\b", re.IGNORECASE)
PRIORITY_SYNTAX_RE = re.compile(r"\b(?:p|prio|priority)\s*:\s*([\w,]+)", re.IGNORECASE)
NO_PRIORITY_RE = re.compile(r"\b(?:no|without)\s+priority\b", re.IGNORECASE)
STATUS_SYNTAX_RE = re.compile(r"\b(?:s|status)\s*:\s*([^\s]+)", re.IGNORECASE)
DUE_SYNTAX_RE = re.compile(r"\b(?:d|due)\s*:\s*([^\s]+)", re.IGNORECASE)
DUE_BEFORE_RE = re.compile(r"\b(?:due\s+)?before\s*:?\s*(" + DATE_TOKEN + r")", re.IGNORECASE)
DUE_AFTER_RE = re.compile(r"\b(?:due\s+)?after\s*:?\s*(" + DATE_TOKEN + r")", re.IGNORECASE)
DUE_BETWEEN_RE = re.compile(
    r"\b(?:due\s+)?(?:from|between)\s+(?P<start>" + DATE_TOKEN + r")\s+(?:to|and|until|through|-)\s+(?P<end>" + DATE_TOKEN + r")",
    re.IGNORECASE,
)
NO_DUE_RE = re.compile(r"\b(?:no|without)\s+(?:due\s+)?(?:date|deadline)\b|没有截止日期|无截止日期|utan\s+datum", re.IGNORECASE)


@dataclass
class HeuristicParse:
    """What the regex/heuristic parser can recover without a language model."""
    core_keywords: List[str] = field(default_factory=list)
    priority: Optional[PriorityFilter] = None
    due_date: Optional[DueDateFilter] = None
    status: List[str] = field(default_factory=list)
    folder: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    time_context: Optional[TimeContext] = None
    is_vague: bool = False
    vagueness_ratio: float = 0.0
    detected_language: str = "en"
    remainder: str = ""
    explicit: Set[str] = field(default_factory=set)

    @property
    def has_filters(self) -> bool:
        return any([self.priority, self.due_date, self.status, self.folder, self.tags])


class QueryParser:
    """
    Pure regex/heuristic query parser.

    Explicit syntax (p1, s:open, d:today, #tag, folder:x) is always honored and
    marked as explicit so it can override a model's reading. Natural phrases
    are matched against the merged property vocabulary.
    """

    def __init__(self, settings: SearchSettings, vocabulary: Optional[PropertyVocabulary] = None):
        self.settings = settings
        self.vocabulary = vocabulary or PropertyVocabulary.build(settings)
        self.lexicon = generic_lexicon(settings)

    def parse(self, query: str, today: date) -> HeuristicParse:
        result = HeuristicParse(detected_language=detect_language(query))
        text = f" {query or ''} "

        text = self._extract_tags(text, result)
        text = self._extract_folder(text, result)
        text = self._extract_priority_syntax(text, result)
        text = self._extract_status_syntax(text, result)
        text, pending_time = self._extract_due(text, result, today)
        text = self._extract_priority_phrases(text, result)
        text = self._extract_status_phrases(text, result)

        result.remainder = re.sub(r"\s+", " ", text).strip()
        candidates = self.keywords_from_text(result.remainder)

        result.vagueness_ratio = vagueness_ratio(candidates, self.lexicon)
        result.is_vague = bool(candidates) and result.vagueness_ratio >= self.settings.vague_threshold
        if result.is_vague:
            result.core_keywords = candidates
        else:
            result.core_keywords = [k for k in candidates if not is_generic(k, self.lexicon)] or candidates

        if pending_time is not None:
            self.resolve_time_expression(result, pending_time, today)
        return result

    def keywords_from_text(self, text: str) -> List[str]:
        words = [w for w in split_words(text) if not is_stop_word(w)]
        return dedupe_keywords(words, substring_overlap=False)

    def resolve_time_expression(self, result: HeuristicParse, phrase: Tuple[str, str], today: date):
        """
        A bare time phrase is a hint when the rest of the query is vague and a
        filter when it is attached to concrete content.
        """
        term, key = phrase
        bounds = period_bounds(key, today)
        if bounds is None:
            return
        since, until = bounds
        if result.is_vague:
            result.time_context = TimeContext(term=term, until=until, since=since)
            return
        if result.due_date is not None:
            return
        if key in {"today", "tomorrow"}:
            # same day match as "due today"
            result.due_date = DueDateFilter(kind="keyword", keywords=(key,), term=term)
        elif since is None:
            result.due_date = DueDateFilter(kind="range", operator="<=", start=until, term=term)
        else:
            result.due_date = DueDateFilter(kind="range", operator="between", start=since, end=until, term=term)

    # -----------------------------
    # Explicit syntax
    # -----------------------------

    def _extract_tags(self, text: str, result: HeuristicParse) -> str:
        def grab(m):
            tag = m.group(1).strip().lower()
            if tag and tag not in result.tags:
                result.tags.append(tag)
            return " "
        text = TAG_RE.sub(grab, text)
        if result.tags:
            result.explicit.add("tags")
        return text

    def _extract_folder(self, text: str, result: HeuristicParse) -> str:
        def grab(m):
            result.folder = m.group(1).strip("\"'")
            result.explicit.add("folder")
            return " "
        return FOLDER_RE.sub(grab, text, count=1)

    def _extract_priority_syntax(self, text: str, result: HeuristicParse) -> str:
        levels: List[int] = []
        mode: Optional[str] = None

        def grab_short(m):
            level = int(m.group(1))
            if level not in levels:
                levels.append(level)
            return " "

        def grab_syntax(m):
            nonlocal mode
            for raw in m.group(1).split(","):
                value = raw.strip().lower()
                if value in {"all", "any"}:
                    mode = "any"
                elif value == "none":
                    mode = "none"
                elif value.isdigit() and 1 <= int(value) <= 4:
                    levels.append(int(value))
                else:
                    key = self.vocabulary.lookup("priority", value)
                    if key and key.isdigit():
                        levels.append(int(key))
            return " "

        def grab_none(m):
            nonlocal mode
            mode = "none"
            return " "

        text = PRIORITY_SYNTAX_RE.sub(grab_syntax, text)
        text = PRIORITY_SHORT_RE.sub(grab_short, text)
        text = NO_PRIORITY_RE.sub(grab_none, text)

        if mode in {"any", "none"}:
            result.priority = PriorityFilter(mode=mode)
        elif levels:
            result.priority = PriorityFilter(mode="values", values=tuple(sorted(set(levels))))
        if result.priority is not None:
            result.explicit.add("priority")
        return text

    def _extract_status_syntax(self, text: str, result: HeuristicParse) -> str:
        def grab(m):
            for raw in m.group(1).split(","):
                category = self.resolve_status(raw)
                if category and category not in result.status:
                    result.status.append(category)
            return " "
        text = STATUS_SYNTAX_RE.sub(grab, text)
        if result.status:
            result.explicit.add("status")
        return text

    def resolve_status(self, value: str) -> Optional[str]:
        """Category key from a category name, display phrase, or raw marker."""
        if value is None:
            return None
        raw = value.strip()
        if not raw:
            return None
        for category in self.settings.status_mapping:
            if raw.lower() == category.lower():
                return category
        alias = STATUS_ALIASES.get(raw.lower())
        if alias in self.settings.status_mapping:
            return alias
        if (len(raw) == 1 and not raw.isalnum()) or raw in {"x", "X"}:
            return self.settings.status_category(raw)
        key = self.vocabulary.lookup("status", raw.replace("_", " "))
        if key and key != "general":
            return key
        return None

    # -----------------------------
    # Due dates
    # -----------------------------

    def _extract_due(self, text: str, result: HeuristicParse, today: date) -> Tuple[str, Optional[Tuple[str, str]]]:
        filters: List[DueDateFilter] = []
        keywords: List[str] = []

        def grab_syntax(m):
            for raw in m.group(1).split(","):
                value = DUE_KEYWORD_ALIASES.get(raw.strip().lower(), raw.strip().lower())
                if value in DUE_KEYWORDS:
                    keywords.append(value)
                    continue
                parsed = parse_date_expression(value, today)
                if parsed is not None:
                    filters.append(DueDateFilter(kind="date", on=parsed, term=m.group(0).strip()))
            return " "

        def grab_between(m):
            start = self._date_token_bounds(m.group("start"), today)
            end = self._date_token_bounds(m.group("end"), today)
            if start and end and start[0] <= end[1]:
                filters.append(DueDateFilter(kind="range", operator="between", start=start[0], end=end[1], term=m.group(0).strip()))
                return " "
            return m.group(0)

        def grab_before(m):
            bounds = self._date_token_bounds(m.group(1), today)
            if bounds is None:
                return m.group(0)
            filters.append(DueDateFilter(kind="range", operator="<", start=bounds[0], term=m.group(0).strip()))
            return " "

        def grab_after(m):
            bounds = self._date_token_bounds(m.group(1), today)
            if bounds is None:
                return m.group(0)
            filters.append(DueDateFilter(kind="range", operator=">", start=bounds[1], term=m.group(0).strip()))
            return " "

        def grab_none(m):
            keywords.append("none")
            return " "

        text = DUE_SYNTAX_RE.sub(grab_syntax, text)
        text = NO_DUE_RE.sub(grab_none, text)
        text = DUE_BETWEEN_RE.sub(grab_between, text)
        text = DUE_BEFORE_RE.sub(grab_before, text)
        text = DUE_AFTER_RE.sub(grab_after, text)

        # "overdue" is a state, never a hint
        for phrase in self.vocabulary.due_date.get("overdue", ()):
            text, hit = _remove_phrase(text, phrase)
            if hit:
                keywords.append("overdue")

        explicit_any = bool(filters or keywords)
        text, marked = self._extract_marked_time(text, today, filters, keywords)

        text, bare = self._extract_bare_time(text)
        pending: Optional[Tuple[str, str]] = None
        if not filters and not keywords:
            pending = bare
            if pending is None:
                for phrase in self.vocabulary.due_date.get("general", ()):
                    text, hit = _remove_phrase(text, phrase)
                    if hit:
                        keywords.append("any")
                        marked = True
                        break

        if filters:
            result.due_date = filters[0]
            if len(filters) > 1:
                logger.debug("[Parser] %d due expressions, keeping '%s'", len(filters), filters[0].term)
        elif keywords:
            unique = tuple(dict.fromkeys(keywords))
            result.due_date = DueDateFilter(kind="keyword", keywords=unique, term=",".join(unique))
        if result.due_date is not None and (explicit_any or marked):
            result.explicit.add("due_date")
        return text, pending

    def _extract_marked_time(self, text: str, today: date, filters: List[DueDateFilter], keywords: List[str]) -> Tuple[str, bool]:
        """'due today', 'deadline this week', 'due on March 3': a time phrase with a due marker is a filter."""
        markers = sorted(self.vocabulary.due_date.get("general", ()), key=len, reverse=True)
        if not markers:
            return text, False
        marker_alt = "|".join(re.escape(m) for m in markers)
        time_alt = "|".join(re.escape(p) for p, _ in self._time_phrases())
        pattern = re.compile(
            r"(?:(?<![A-Za-z])(?:" + marker_alt + r")\s*(?:on|by|in)?\s*(?P<fwd>" + DATE_TOKEN + "|" + time_alt + r"))"
            r"|(?:(?P<rev>" + time_alt + r")\s*(?:" + marker_alt + r"))",
            re.IGNORECASE,
        )
        found = False

        def grab(m):
            nonlocal found
            phrase = (m.group("fwd") or m.group("rev") or "").strip().lower()
            key = self._time_key(phrase)
            if key in {"today", "tomorrow"}:
                keywords.append(key)
            elif key is not None:
                bounds = period_bounds(key, today)
                if bounds is None:
                    return m.group(0)
                since, until = bounds
                if since is None:
                    filters.append(DueDateFilter(kind="range", operator="<=", start=until, term=m.group(0).strip()))
                else:
                    filters.append(DueDateFilter(kind="range", operator="between", start=since, end=until, term=m.group(0).strip()))
            else:
                parsed = parse_date_expression(phrase, today)
                if parsed is None:
                    return m.group(0)
                filters.append(DueDateFilter(kind="date", on=parsed, term=m.group(0).strip()))
            found = True
            return " "

        return pattern.sub(grab, text), found

    def _extract_bare_time(self, text: str) -> Tuple[str, Optional[Tuple[str, str]]]:
        for phrase, key in self._time_phrases():
            text, hit = _remove_phrase(text, phrase)
            if hit:
                return text, (phrase, key)
        return text, None

    def _time_phrases(self) -> List[Tuple[str, str]]:
        return [
            (p, k) for p, k in self.vocabulary.phrases("due_date")
            if k in TIME_KEYS
        ]

    def _time_key(self, phrase: str) -> Optional[str]:
        key = self.vocabulary.lookup("due_date", phrase)
        if key is not None and key not in {"general", "overdue", "future"}:
            return key
        normalized = re.sub(r"\s+", "-", phrase)
        if normalized in PERIOD_TOKENS:
            return normalized
        return None

    def _date_token_bounds(self, token: str, today: date) -> Optional[Tuple[date, date]]:
        """(first day, last day) covered by a date token; a plain date covers one day."""
        normalized = re.sub(r"\s+", "-", token.strip().lower())
        if normalized in PERIOD_TOKENS:
            bounds = period_bounds(normalized, today)
            if bounds is not None:
                since, until = bounds
                if since is None:
                    since = _period_start(normalized, today, until)
                return since, until
        parsed = parse_date_expression(token, today)
        if parsed is None:
            return None
        return parsed, parsed

    # -----------------------------
    # Natural property phrases
    # -----------------------------

    def _extract_priority_phrases(self, text: str, result: HeuristicParse) -> str:
        if result.priority is not None:
            return text
        levels = [(p, k) for p, k in self.vocabulary.phrases("priority") if k.isdigit()]
        general = sorted(self.vocabulary.priority.get("general", ()), key=len, reverse=True)
        general_alt = "|".join(re.escape(g) for g in general) or r"(?!x)x"
        found: List[int] = []

        for phrase, key in levels:
            level_re = _phrase_pattern(phrase)
            combined = re.compile(
                r"(?:" + level_re + r")\s*-?\s*(?:" + general_alt + r")"
                r"|(?:" + general_alt + r")\s*[:=]?\s*(?:" + level_re + r")",
                re.IGNORECASE,
            )
            text, n = combined.subn(" ", text)
            if n:
                found.append(int(key))
                continue
            if phrase in STANDALONE_PRIORITY_TERMS:
                text, hit = _remove_phrase(text, phrase)
                if hit:
                    found.append(int(key))

        if found:
            result.priority = PriorityFilter(mode="values", values=tuple(sorted(set(found))))
            return text

        for phrase in general:
            if phrase in {"important", "重要", "viktig"}:
                continue
            text, hit = _remove_phrase(text, phrase)
            if hit:
                result.priority = PriorityFilter(mode="any")
                break
        return text

    def _extract_status_phrases(self, text: str, result: HeuristicParse) -> str:
        if result.status:
            return text
        markers = sorted(self.vocabulary.status.get("general", ()), key=len, reverse=True)
        marker_alt = "|".join(_phrase_pattern(m) for m in markers) or r"(?!x)x"
        for phrase, key in self.vocabulary.phrases("status"):
            if phrase.lower() in MARKED_STATUS_TERMS:
                p = _phrase_pattern(phrase)
                marked = r"(?:" + marker_alt + r")\s*[:=]?\s*" + p + r"|" + p + r"\s+(?:" + marker_alt + r")"
                text, n = re.subn(marked, " ", text, flags=re.IGNORECASE)
                hit = n > 0
            else:
                text, hit = _remove_phrase(text, phrase)
            if hit and key not in result.status:
                result.status.append(key)
        return text


def _phrase_pattern(phrase: str) -> str:
    escaped = re.escape(phrase).replace(r"\ ", r"\s+")
    if contains_cjk(phrase):
        return escaped
    return r"(?<![\w])" + escaped + r"(?![\w])"


def _remove_phrase(text: str, phrase: str) -> Tuple[str, bool]:
    new_text, n = re.subn(_phrase_pattern(phrase), " ", text, flags=re.IGNORECASE)
    return new_text, n > 0


def _period_start(key: str, today: date, until: date) -> date:
    if key.endswith("week"):
        return until - timedelta(days=6)
    if key.endswith("month"):
        return until.replace(day=1)
    if key.endswith("year"):
        return date(until.year, 1, 1)
    return today
