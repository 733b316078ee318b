"""
Smoke Test: Multi-Criteria Ranking
Validates:
  - "auto" resolution and duplicate removal ([auto, relevance, dueDate] -> [relevance, dueDate])
  - Fixed per-criterion directions, missing values last
  - Stable sequential tie-breaks; ranking twice changes nothing
  - Unusable specs fall back to the single default criterion

Run: python test_ranking.py
"""
from datetime import date, timedelta

from taskquery.ranking import MultiCriteriaRanker
from taskquery.settings import SearchSettings
from taskquery.task_schema import ScoredTask, Task

TODAY = date(2025, 3, 12)


def st(task_id, composite=0.0, **fields):
    return ScoredTask(task=Task(id=task_id, text=fields.pop("text", task_id), **fields),
                      relevance_score=0.0, due_date_score=0.0, priority_score=0.0, composite_score=composite)


def ids(items):
    return [s.task_id for s in items]


ranker = MultiCriteriaRanker(SearchSettings())


def test_resolve_auto():
    print("\n── Test: Sort Resolution ──")
    assert ranker.resolve(["auto", "relevance", "dueDate"], has_keywords=True) == ["relevance", "dueDate"]
    assert ranker.resolve(["auto", "dueDate", "priority"], has_keywords=False) == ["dueDate", "priority"]
    assert ranker.resolve(["due", "Priority", "bogus", "due_date"], has_keywords=True) == ["dueDate", "priority"]
    print("  ✓ auto replaced, aliases canonicalized, duplicates dropped")


def test_invalid_spec_defaults():
    print("\n── Test: Invalid Spec ──")
    assert ranker.resolve([], has_keywords=True) == ["relevance"]
    assert ranker.resolve(["bogus"], has_keywords=False) == ["dueDate"]
    assert ranker.resolve(None, has_keywords=False) == ["dueDate"]
    print("  ✓ Single default criterion")


def test_directions():
    print("\n── Test: Criterion Directions ──")
    items = [
        st("late", 10, priority=None, due_date=None, created_date=TODAY - timedelta(days=5), text="beta"),
        st("p3", 30, priority=3, due_date=TODAY + timedelta(days=3), created_date=None, text="Alpha"),
        st("p1", 20, priority=1, due_date=TODAY - timedelta(days=1), created_date=TODAY, text="gamma"),
    ]
    assert ids(ranker.rank(items, ["relevance"])) == ["p3", "p1", "late"]
    assert ids(ranker.rank(items, ["priority"])) == ["p1", "p3", "late"]
    assert ids(ranker.rank(items, ["dueDate"])) == ["p1", "p3", "late"]
    assert ids(ranker.rank(items, ["created"])) == ["p1", "late", "p3"]
    assert ids(ranker.rank(items, ["alphabetical"])) == ["p3", "late", "p1"]
    print("  ✓ relevance desc, priority/dueDate asc with none last, created desc, A-Z")


def test_status_order():
    print("\n── Test: Status Criterion ──")
    items = [st("done", status_symbol="x"), st("open"), st("wip", status_symbol="/"), st("gone", status_symbol="-")]
    assert ids(ranker.rank(items, ["status"])) == ["wip", "open", "done", "gone"]
    print("  ✓ in progress, open, completed, cancelled")


def test_tie_breaks_stable():
    print("\n── Test: Tie Breaks ──")
    items = [
        st("a", 50, priority=2),
        st("b", 50, priority=1),
        st("c", 50, priority=2),
        st("d", 90, priority=4),
    ]
    ranked = ranker.rank(items, ["relevance", "priority"])
    assert ids(ranked) == ["d", "b", "a", "c"], "full ties keep input order"
    assert ids(ranker.rank(ranked, ["relevance", "priority"])) == ids(ranked)
    print("  ✓ Sequential tie-breaks, idempotent")


def test_overdue_wins_equal_score():
    """Equal composite: the dueDate tie-break puts the overdue task first."""
    print("\n── Test: Overdue First On Tie ──")
    future = st("future", 100.0, due_date=TODAY + timedelta(days=4))
    overdue = st("overdue", 100.0, due_date=TODAY - timedelta(days=2))
    criteria, ranked = ranker.rank_with([future, overdue], ["relevance", "dueDate"], has_keywords=True)
    assert criteria == ["relevance", "dueDate"]
    assert ids(ranked) == ["overdue", "future"]
    print("  ✓ overdue ranks first")


def test_two_orderings_same_scores():
    print("\n── Test: Display vs Analysis Ordering ──")
    items = [st("x", 10, due_date=TODAY), st("y", 90, due_date=TODAY + timedelta(days=9))]
    _, display = ranker.rank_with(items, ["dueDate"], has_keywords=True)
    _, analysis = ranker.rank_with(items, ["relevance"], has_keywords=True)
    assert ids(display) == ["x", "y"] and ids(analysis) == ["y", "x"]
    assert display[0] is items[0], "scores are reused, not recomputed"
    print("  ✓ Two orderings over one scored set")


def main():
    print("=" * 60)
    print("  RANKING — SMOKE TEST")
    print("=" * 60)

    test_resolve_auto()
    test_invalid_spec_defaults()
    test_directions()
    test_status_order()
    test_tie_breaks_stable()
    test_overdue_wins_equal_score()
    test_two_orderings_same_scores()

    print("\n" + "=" * 60)
    print("  ✓ ALL TESTS PASSED")
    print("=" * 60)


if __name__ == "__main__":
    main()
