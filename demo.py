import os
import sys
import time
import logging
from datetime import datetime, timedelta

from backend.storage import LocalTaskStore
from taskquery.extraction import LLMQueryExtractor
from taskquery.search import TaskSearchEngine
from taskquery.settings import SearchSettings
from taskquery.task_schema import Task

# ANSI Escape codes for pretty terminal colors
class Colors:
    HEADER = '\033[95m'
    OKBLUE = '\033[94m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'

DEMO_STORE = "/tmp/taskquery/demo_tasks.json"
DEMO_TODAY = datetime(2025, 3, 12, 9, 0)  # a Wednesday

# LLM parsing is optional for the demo; the heuristic parser runs without a key
API_KEY = os.environ.get("OPENAI_API_KEY") or os.environ.get("GROQ_API_KEY")


def print_step(title, desc):
    print(f"\n{Colors.HEADER}{Colors.BOLD}===================================================={Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}► {title}{Colors.ENDC}")
    print(f"{Colors.HEADER}{Colors.BOLD}===================================================={Colors.ENDC}")
    print(f"{Colors.OKCYAN}{desc}{Colors.ENDC}\n")
    time.sleep(1)


def prepare_demo_data():
    today = DEMO_TODAY.date()
    d = lambda days: today + timedelta(days=days)
    tasks = [
        Task(id="t1", text="Fix login bug on the signup page", priority=1, due_date=d(-2), tags=["work"], folder="Projects/Web"),
        Task(id="t2", text="Fix flaky CI pipeline", priority=2, due_date=d(1), tags=["work"], folder="Projects/Web"),
        Task(id="t3", text="Write quarterly report", priority=2, due_date=d(5), tags=["work"], folder="Reports"),
        Task(id="t4", text="Review pull request for payment bug", status_symbol="/", due_date=d(0), folder="Projects/Web"),
        Task(id="t5", text="Buy groceries", priority=4, tags=["home"], folder="Personal"),
        Task(id="t6", text="Plan team offsite", priority=3, due_date=d(20), created_date=d(-10), folder="Team"),
        Task(id="t7", text="修复支付页面的错误", priority=1, due_date=d(3), folder="Projects/Web"),
        Task(id="t8", text="Submit tax forms", status_symbol="x", due_date=d(-30), folder="Personal"),
    ]
    os.makedirs(os.path.dirname(DEMO_STORE), exist_ok=True)
    store = LocalTaskStore(DEMO_STORE)
    store.save(tasks)
    return store, tasks


def show(outcome):
    p = outcome.parsed
    print(f"{Colors.BOLD}Parsed:{Colors.ENDC} keywords={list(p.core_keywords)} "
          f"filters={p.filter_summary()} vague={p.is_vague} time={p.time_context.term if p.time_context else None}")
    for step in outcome.diagnostics.get("filters", []):
        print(f"  filter {step['name']:<10} {step['before']:>3} → {step['after']:<3} ({step['detail']})")
    if outcome.gate:
        g = outcome.gate
        print(f"  gate   {g.mode} {g.percent:.0f}% × {g.max_possible_score:.1f} = {g.threshold:.1f}")
    print(f"  sort   {' > '.join(outcome.display_sort)}")
    if not outcome.ranked:
        print(f"{Colors.FAIL}✗ {outcome.reason}{Colors.ENDC}")
        for nm in outcome.near_misses[:3]:
            print(f"    near miss {nm.composite_score:7.2f}  {nm.text}  (excluded by {nm.excluded_by})")
        return
    for i, st in enumerate(outcome.ranked, 1):
        due = st.task.due_date.isoformat() if st.task.due_date else "—"
        print(f"  {Colors.OKGREEN}{i}. {st.composite_score:8.2f}{Colors.ENDC}  {due:10s}  {st.task.text}")


def run_demo():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    print(f"\n{Colors.OKGREEN}{Colors.BOLD}Starting Task Query Pipeline Demo{Colors.ENDC}\n")

    store, tasks = prepare_demo_data()
    print(f"{Colors.BOLD}Task store:{Colors.ENDC} {DEMO_STORE} ({len(tasks)} tasks, today = {DEMO_TODAY.date()})")

    understanding = None
    if API_KEY:
        understanding = LLMQueryExtractor()
        print(f"{Colors.OKBLUE}Using LLM query parser ({understanding.model}){Colors.ENDC}")
    else:
        print(f"{Colors.WARNING}No OPENAI_API_KEY / GROQ_API_KEY: heuristic parser only{Colors.ENDC}")

    engine = TaskSearchEngine(settings=SearchSettings(), task_source=store, understanding=understanding)

    queries = [
        ("Keyword search", "fix bug"),
        ("Explicit filters", "p1 due this week"),
        ("Vague question with a time hint", "what should I work on today"),
        ("Property-only", "d:any"),
        ("Impossible combination", "groceries #work"),
    ]
    for title, query in queries:
        print_step(title, f'Query: "{query}"')
        show(engine.search(query, now=DEMO_TODAY))

    print(f"\n{Colors.OKGREEN}{Colors.BOLD}✓ Demo complete.{Colors.ENDC}\n")


if __name__ == "__main__":
    try:
        run_demo()
    except KeyboardInterrupt:
        sys.exit(0)
