import os
import sys
import json
import logging
import argparse
from datetime import datetime

# Add parent directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from backend.storage import LocalTaskStore
from taskquery.config import config
from taskquery.errors import TaskSourceUnavailable
from taskquery.extraction import LLMQueryExtractor
from taskquery.intelligence import TaskAnalyst
from taskquery.search import SearchOutcome, TaskSearchEngine
from taskquery.settings import SearchSettings


def build_engine(store_path, use_llm, analyze, settings):
    understanding = None
    analyst = None
    if use_llm or analyze:
        try:
            if use_llm:
                understanding = LLMQueryExtractor()
            if analyze:
                analyst = TaskAnalyst()
        except ValueError as e:
            print(f"⚠ {e} Continuing with the heuristic parser only.")
    return TaskSearchEngine(settings=settings, task_source=LocalTaskStore(store_path),
                            understanding=understanding, analyst=analyst)


def print_outcome(outcome: SearchOutcome, as_json: bool = False):
    if as_json:
        print(json.dumps({
            "query": outcome.query,
            "parsed": outcome.parsed.model_dump(mode="json"),
            "sort": outcome.display_sort,
            "results": [
                {"id": st.task_id, "text": st.task.text, "score": st.composite_score,
                 "relevance": st.relevance_score, "due": st.task.due_date.isoformat() if st.task.due_date else None,
                 "priority": st.task.priority}
                for st in outcome.ranked
            ],
            "reason": outcome.reason,
            "near_misses": [nm.__dict__ for nm in outcome.near_misses],
            "diagnostics": outcome.diagnostics,
            "narrative": outcome.narrative,
        }, ensure_ascii=False, indent=2))
        return

    p = outcome.parsed
    print(f"\n🔍 {outcome.query}")
    print(f"   keywords: {', '.join(p.core_keywords) or '-'}  (expanded: {len(p.expanded_keywords)})")
    print(f"   filters:  {p.filter_summary() or '-'}   vague={p.is_vague}  parser={p.source}")
    if p.time_context:
        print(f"   time:     {p.time_context.term} (until {p.time_context.until})")
    if outcome.gate:
        g = outcome.gate
        print(f"   gate:     {g.mode} {g.percent:.0f}% of {g.max_possible_score:.1f} = {g.threshold:.1f}"
              f"{'  (safety floor)' if g.fell_back else ''}")
    print(f"   sort:     {' > '.join(outcome.display_sort)}\n")

    if not outcome.ranked:
        print(f"   ✗ {outcome.reason}")
        for nm in outcome.near_misses:
            print(f"     ~ {nm.composite_score:8.2f}  {nm.text}  [excluded by {nm.excluded_by}]")
        return

    for i, st in enumerate(outcome.ranked, 1):
        t = st.task
        due = t.due_date.isoformat() if t.due_date else "—"
        prio = f"P{t.priority}" if t.priority else "  "
        print(f"  {i:3d}. {st.composite_score:8.2f}  {prio}  {due:10s}  {t.text}")

    if outcome.narrative:
        print(f"\n{outcome.narrative}")


def main():
    parser = argparse.ArgumentParser(description="Search tasks stored in a local JSON task store")
    parser.add_argument("query", help="Free-text query, e.g. 'fix bug p1 due this week'")
    parser.add_argument("--store", default=config['task_store_path'], help="Path to the tasks JSON file")
    parser.add_argument("--llm", action="store_true", help="Use the LLM query parser")
    parser.add_argument("--analyze", action="store_true", help="Ask the LLM for a narrative over the results")
    parser.add_argument("--sort", help="Display sort, comma separated (default: auto,dueDate,priority)")
    parser.add_argument("--threshold", type=float, help="Quality threshold percent (0 = adaptive)")
    parser.add_argument("--today", help="Reference date YYYY-MM-DD (default: today)")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    overrides = {}
    if args.sort:
        overrides["display_sort"] = args.sort
    if args.threshold is not None:
        overrides["quality_threshold_pct"] = args.threshold
    settings = SearchSettings.from_env(**overrides)

    now = datetime.strptime(args.today, "%Y-%m-%d") if args.today else None
    engine = build_engine(args.store, args.llm, args.analyze, settings)

    try:
        outcome = engine.search(args.query, now=now, analyze=args.analyze)
    except TaskSourceUnavailable as e:
        print(f"❌ {e}")
        sys.exit(1)

    print_outcome(outcome, as_json=args.json)


if __name__ == "__main__":
    main()
