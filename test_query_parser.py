"""
Smoke Test: Heuristic Query Parser
Validates:
  - Explicit syntax (p1, s:, d:, #tag, folder:) becomes filters, not keywords
  - Vague questions keep their time phrase as a hint, concrete ones filter on it
  - "this week" is an open-ended <= end-of-week bound
  - Vocabulary precedence: user terms > built-in terms > derived terms

Run: python test_query_parser.py
"""
from datetime import date

from taskquery.interpreter import QueryInterpreter
from taskquery.query_parser import QueryParser
from taskquery.settings import SearchSettings
from taskquery.vocabulary import PropertyVocabulary, dedupe_keywords, split_words

TODAY = date(2025, 3, 12)       # Wednesday
END_OF_WEEK = date(2025, 3, 16)  # Sunday


def parse(query, **settings):
    return QueryParser(SearchSettings(**settings)).parse(query, TODAY)


def test_plain_keywords():
    print("\n── Test: Plain Keywords ──")
    result = parse("fix the login bug")
    assert result.core_keywords == ["fix", "login", "bug"]
    assert not result.is_vague
    assert not result.has_filters
    print(f"  ✓ {result.core_keywords}")


def test_priority_syntax():
    print("\n── Test: Priority Syntax ──")
    assert parse("p1 p2 bug").priority.values == (1, 2)
    assert parse("priority:any report").priority.mode == "any"
    assert parse("report with no priority").priority.mode == "none"
    assert parse("high priority report").priority.values == (1,)
    assert parse("urgent report").priority.values == (1,)
    assert parse("p1 bug").core_keywords == ["bug"]
    print("  ✓ Shorthand, p:any, 'no priority' and natural phrases")


def test_status_syntax():
    print("\n── Test: Status Syntax ──")
    assert parse("s:/ bug").status == ["inProgress"]
    assert parse("status:open,x").status == ["open", "completed"]
    assert parse("completed reports").status == ["completed"]
    assert parse("s:done,todo").status == ["completed", "open"]
    print("  ✓ Symbols and names resolve to categories")


def test_due_syntax():
    print("\n── Test: Due Date Syntax ──")
    due = parse("d:today").due_date
    assert due.kind == "keyword" and due.keywords == ("today",)

    assert parse("d:any").due_date.keywords == ("any",)
    assert parse("tasks with no date").due_date.keywords == ("none",)
    assert parse("overdue invoices").due_date.keywords == ("overdue",)

    before = parse("report before 2025-03-20").due_date
    assert (before.kind, before.operator, before.start) == ("range", "<", date(2025, 3, 20))

    between = parse("report between 2025-03-01 and 2025-03-31").due_date
    assert between.operator == "between"
    assert (between.start, between.end) == (date(2025, 3, 1), date(2025, 3, 31))

    on = parse("d:2025-04-01").due_date
    assert on.kind == "date" and on.on == date(2025, 4, 1)
    print("  ✓ Keywords, ranges and exact dates")


def test_due_this_week_is_open_ended():
    """'due this week' includes overdue tasks: <= Sunday, no lower bound."""
    print("\n── Test: This Week ──")
    due = parse("report due this week").due_date
    assert due.kind == "range"
    assert due.operator == "<="
    assert due.start == END_OF_WEEK
    assert parse("report due this week").core_keywords == ["report"]
    print(f"  ✓ <= {due.start}")


def test_due_today_marker_is_filter():
    print("\n── Test: Marked Time Phrase ──")
    result = parse("what is due today")
    assert result.due_date.keywords == ("today",)
    assert result.time_context is None
    print("  ✓ 'due today' filters even in a vague query")


def test_vague_time_phrase_is_context():
    print("\n── Test: Vague Time Phrase ──")
    result = parse("what should I work on this week")
    assert result.is_vague
    assert result.vagueness_ratio == 1.0
    assert result.due_date is None
    assert result.time_context.until == END_OF_WEEK
    print(f"  ✓ time context '{result.time_context.term}' until {result.time_context.until}")


def test_concrete_time_phrase_is_filter():
    print("\n── Test: Concrete Time Phrase ──")
    result = parse("fix bug this week")
    assert not result.is_vague
    assert result.time_context is None
    assert result.due_date.operator == "<=" and result.due_date.start == END_OF_WEEK

    last = parse("report last week").due_date
    assert last.operator == "between"
    assert (last.start, last.end) == (date(2025, 3, 3), date(2025, 3, 9))
    print("  ✓ Forward periods use <=, backward periods are closed ranges")


def test_bare_today_matches_due_today():
    print("\n── Test: Bare Today ──")
    bare = parse("fix bug today").due_date
    marked = parse("fix bug due today").due_date
    assert bare.kind == marked.kind == "keyword"
    assert bare.keywords == marked.keywords == ("today",)
    print("  ✓ 'today' filters the same with or without 'due'")


def test_generic_words_pruned_when_not_vague():
    print("\n── Test: Generic Word Pruning ──")
    result = parse("what bug should I fix")
    assert result.vagueness_ratio < 0.7
    assert result.core_keywords == ["bug", "fix"]

    custom = parse("fix the widget", generic_words=("widget",))
    assert custom.core_keywords == ["fix"]
    print("  ✓ Generic words dropped from concrete queries")


def test_tags_and_folder():
    print("\n── Test: Tags + Folder ──")
    result = parse("bug #Work #urgent-fix folder:Projects/Web")
    assert result.tags == ["work", "urgent-fix"]
    assert result.folder == "Projects/Web"
    assert result.core_keywords == ["bug"]
    print("  ✓ Tags lowercased, folder captured")


def test_folder_words_in_free_text():
    print("\n── Test: Folder Words In Free Text ──")
    path_bug = parse("fix path bug")
    assert path_bug.folder is None
    assert "bug" in path_bug.core_keywords
    assert parse("clean up folder structure").folder is None
    assert parse("report in folder Work").folder == "Work"
    assert parse("report path=notes/daily").folder == "notes/daily"
    print("  ✓ Folder filter needs folder:, path= or 'in folder'")


def test_status_words_need_marker():
    print("\n── Test: Everyday Status Words ──")
    dropped = parse("fix dropped packets")
    assert dropped.status == []
    assert "dropped" in dropped.core_keywords
    assert parse("open the window").status == []
    assert parse("status closed bugs").status == ["completed"]
    assert parse("bugs in open state").status == ["open"]
    print("  ✓ open/closed/dropped only filter next to a status marker")


def test_chinese_query():
    print("\n── Test: Chinese Query ──")
    result = parse("紧急 修复错误")
    assert result.detected_language == "zh"
    assert result.priority.values == (1,)
    assert result.core_keywords == ["修复错误"]
    assert split_words("我的任务") == ["任务"]
    print("  ✓ CJK runs kept whole, 紧急 -> priority 1")


def test_vocabulary_precedence():
    print("\n── Test: Vocabulary Precedence ──")
    settings = SearchSettings(user_property_terms={"priority": {"3": ["urgent"]}, "status": {"completed": ["shipped"]}})
    vocab = PropertyVocabulary.build(settings)
    assert vocab.lookup("priority", "urgent") == "3", "user term should win over built-in"
    assert vocab.lookup("priority", "critical") == "1"
    assert vocab.lookup("status", "shipped") == "completed"
    assert vocab.lookup("status", "question") == "question", "derived from the status mapping"

    assert QueryParser(settings).parse("urgent report", TODAY).priority.values == (3,)
    print("  ✓ user > built-in > derived")


def test_keyword_dedupe():
    print("\n── Test: Keyword Dedupe ──")
    assert dedupe_keywords(["fix", "Fix", "fixing", "bug"]) == ["fix", "bug"]
    assert dedupe_keywords(["fixing", "fix"], substring_overlap=False) == ["fixing", "fix"]
    assert dedupe_keywords(["修复错误", "修复"], substring_overlap=False) == ["修复错误"]
    print("  ✓ Exact + substring overlap, first seen wins")


def test_static_expansion():
    print("\n── Test: Offline Expansion ──")
    parsed = QueryInterpreter(SearchSettings()).interpret("fix bug", TODAY)
    assert parsed.expanded_keywords[:2] == ("fix", "bug")
    assert "repair" in parsed.expanded_keywords
    assert "修复" in parsed.expanded_keywords
    assert len(set(parsed.expanded_keywords)) == len(parsed.expanded_keywords)

    plain = QueryInterpreter(SearchSettings(expansion_enabled=False)).interpret("fix bug", TODAY)
    assert plain.expanded_keywords == ("fix", "bug")
    print(f"  ✓ {len(parsed.expanded_keywords)} expanded keywords")


def main():
    print("=" * 60)
    print("  QUERY PARSER — SMOKE TEST")
    print("=" * 60)

    test_plain_keywords()
    test_priority_syntax()
    test_status_syntax()
    test_due_syntax()
    test_due_this_week_is_open_ended()
    test_due_today_marker_is_filter()
    test_vague_time_phrase_is_context()
    test_concrete_time_phrase_is_filter()
    test_bare_today_matches_due_today()
    test_generic_words_pruned_when_not_vague()
    test_tags_and_folder()
    test_folder_words_in_free_text()
    test_status_words_need_marker()
    test_chinese_query()
    test_vocabulary_precedence()
    test_keyword_dedupe()
    test_static_expansion()

    print("\n" + "=" * 60)
    print("  ✓ ALL TESTS PASSED")
    print("=" * 60)


if __name__ == "__main__":
    main()
