"""
Smoke Test: LLM Query Extraction + Interpreter Fallback
Validates:
  - JSON repair handles common LLM output mistakes
  - Pydantic payload validation drops bad items, rejects bad shapes
  - LLMQueryExtractor regenerates once, then raises QueryParseError
  - QueryInterpreter degrades to the heuristic parse on any collaborator failure
  - An explicit vague verdict with reasoning overrides the generic-word ratio

Run: python test_extraction.py
"""
import json
import time
from datetime import date
from types import SimpleNamespace

from taskquery.errors import QueryParseError
from taskquery.extraction import LLMQueryExtractor, LLMQueryPayload, _attempt_json_repair, _strip_reasoning
from taskquery.interpreter import QueryInterpreter
from taskquery.settings import SearchSettings

TODAY = date(2025, 3, 12)  # Wednesday


class FakeCompletions:
    """Replays canned chat responses; a raised exception stands for an API failure."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    def create(self, **kwargs):
        self.calls += 1
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        message = SimpleNamespace(content=item)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(*responses):
    completions = FakeCompletions(responses)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class FakeUnderstanding:
    def __init__(self, payload=None, delay=0.0, error=None):
        self.payload = payload or {}
        self.delay = delay
        self.error = error
        self.requests = []

    def parse_query(self, request):
        self.requests.append(request)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.payload


def test_json_repair():
    """Test the JSON repair logic handles common LLM mistakes."""
    print("\n── Test: JSON Repair Logic ──")

    fenced = '```json\n{"coreKeywords": ["fix"], "keywords": []}\n```'
    assert _attempt_json_repair(fenced) == {"coreKeywords": ["fix"], "keywords": []}
    print("  ✓ Strips markdown fences")

    trailing = '{"coreKeywords": ["fix", "bug",], "tags": [],}'
    assert _attempt_json_repair(trailing) == {"coreKeywords": ["fix", "bug"], "tags": []}
    print("  ✓ Fixes trailing commas")

    chatty = 'Sure! Here is the JSON:\n{"dueDate": "today"}\nHope that helps.'
    assert _attempt_json_repair(chatty) == {"dueDate": "today"}
    print("  ✓ Drops prose around the object")

    assert _attempt_json_repair('this is not json at all {') is None
    assert _attempt_json_repair('[1, 2, 3]') is None
    print("  ✓ Irrecoverable or non-object JSON returns None")


def test_strip_reasoning():
    """<think> blocks from reasoning models are removed before parsing."""
    print("\n── Test: Reasoning Block Removal ──")
    raw = '<think>the user wants bugs</think>\n{"coreKeywords": ["bug"]}'
    assert json.loads(_strip_reasoning(raw)) == {"coreKeywords": ["bug"]}
    assert _strip_reasoning("<THINKING>x</THINKING> ok") == "ok"
    print("  ✓ Reasoning blocks stripped")


def test_payload_validation():
    """Bad items are dropped; a payload of the wrong shape fails."""
    print("\n── Test: Payload Validation ──")

    payload = LLMQueryPayload.model_validate({
        "coreKeywords": ["fix", 3, "  ", "bug"],
        "priority": ["1", 7, "x", 2, 1],
        "status": "open",
        "dueDate": "  ",
        "aiUnderstanding": {"confidence": 4, "detectedLanguage": "en"},
        "unexpected": "ignored",
    })
    assert payload.coreKeywords == ["fix", "bug"]
    assert payload.priority == [1, 2]
    assert payload.status == ["open"]
    assert payload.dueDate is None
    assert payload.aiUnderstanding.confidence == 1.0
    print("  ✓ Item-level noise dropped, confidence clamped")

    assert LLMQueryPayload.model_validate({"priority": "ANY"}).priority == "any"
    assert LLMQueryPayload.model_validate({"priority": [9]}).priority is None
    print("  ✓ Priority 'any'/'none' and out-of-range levels")

    try:
        LLMQueryPayload.model_validate({"coreKeywords": {"not": "a list"}})
        assert False, "Should have raised validation error"
    except ValueError:
        print("  ✓ Wrong overall shape rejected by Pydantic")


def test_extractor_regenerates_once():
    """Malformed JSON triggers one regeneration; the second answer is used."""
    print("\n── Test: Extractor Regeneration ──")
    good = json.dumps({"coreKeywords": ["fix"], "keywords": ["fix", "repair"], "aiUnderstanding": {"confidence": 0.9}})
    client, completions = fake_client("definitely not json", good)
    extractor = LLMQueryExtractor(client=client, model="test-model")

    payload = extractor.parse_query({"query": "fix", "languages": ["English"], "timeout": 5})
    assert completions.calls == 2
    assert payload.keywords == ["fix", "repair"]
    assert payload.aiUnderstanding.confidence == 0.9
    print("  ✓ Second response accepted after regeneration")


def test_extractor_gives_up():
    """Two failures in a row surface as QueryParseError."""
    print("\n── Test: Extractor Failure ──")
    client, completions = fake_client(RuntimeError("503"), "{broken")
    extractor = LLMQueryExtractor(client=client)
    try:
        extractor.parse_query({"query": "fix bug"})
        assert False, "Should have raised QueryParseError"
    except QueryParseError as e:
        assert "malformed" in str(e)
    assert completions.calls == 2
    print("  ✓ QueryParseError after one regeneration")


def test_interpreter_merges_llm_payload():
    """Model keywords and filters flow into the ParsedQuery; explicit syntax wins."""
    print("\n── Test: Interpreter Merge ──")
    understanding = FakeUnderstanding({
        "coreKeywords": ["fix", "bug"],
        "keywords": ["fix", "bug", "fixing", "repair", "defect", "Repair"],
        "priority": [2],
        "status": ["open"],
        "aiUnderstanding": {"detectedLanguage": "en", "confidence": 0.8},
    })
    interpreter = QueryInterpreter(SearchSettings(), understanding)
    parsed = interpreter.interpret("fix bug p1", TODAY)

    assert parsed.core_keywords == ("fix", "bug")
    assert parsed.expanded_keywords == ("fix", "bug", "repair", "defect")
    assert parsed.priority.values == (1,), "p1 syntax should override the model's priority"
    assert parsed.status == ("open",)
    assert parsed.source == "merged"
    assert parsed.confidence == 0.8
    assert understanding.requests[0]["query"] == "fix bug p1"
    print("  ✓ Expansion deduped (exact + substring), explicit priority kept")


def test_interpreter_timeout_falls_back():
    """A slow collaborator is abandoned and the heuristic parse is returned."""
    print("\n── Test: Interpreter Timeout ──")
    settings = SearchSettings(llm_timeout=0.05, expansion_enabled=False)
    interpreter = QueryInterpreter(settings, FakeUnderstanding({"coreKeywords": ["x"]}, delay=0.5))
    parsed = interpreter.interpret("fix bug", TODAY)

    assert parsed.source == "heuristic"
    assert parsed.core_keywords == ("fix", "bug")
    assert "timed out" in parsed.parser_error
    print(f"  ✓ Fallback with parser_error='{parsed.parser_error}'")


def test_interpreter_malformed_payload_falls_back():
    print("\n── Test: Interpreter Malformed Payload ──")
    interpreter = QueryInterpreter(SearchSettings(expansion_enabled=False),
                                   FakeUnderstanding({"coreKeywords": {"bad": 1}}))
    parsed = interpreter.interpret("fix bug", TODAY)
    assert parsed.source == "heuristic"
    assert parsed.parser_error.startswith("payload failed validation")
    assert parsed.core_keywords == ("fix", "bug")

    interpreter = QueryInterpreter(SearchSettings(expansion_enabled=False),
                                   FakeUnderstanding(error=ConnectionError("offline")))
    parsed = interpreter.interpret("fix bug", TODAY)
    assert parsed.source == "heuristic"
    assert "offline" in parsed.parser_error
    print("  ✓ Validation errors and collaborator exceptions both degrade")


def test_vague_flag_precedence():
    """An explicit vague verdict needs reasoning to override the ratio."""
    print("\n── Test: Vague Flag Precedence ──")
    settings = SearchSettings(expansion_enabled=False)

    overridden = QueryInterpreter(settings, FakeUnderstanding({
        "coreKeywords": ["what", "should", "work"],
        "isVague": False,
        "vagueReasoning": "the user asks about their work project",
    })).interpret("what should I work on", TODAY)
    assert overridden.vagueness_ratio == 1.0
    assert overridden.is_vague is False
    assert overridden.vague_reason == "the user asks about their work project"
    print("  ✓ Flag with reasoning wins over ratio 1.0")

    unexplained = QueryInterpreter(settings, FakeUnderstanding({
        "coreKeywords": ["fix", "bug"],
        "isVague": True,
    })).interpret("fix bug", TODAY)
    assert unexplained.is_vague is False
    print("  ✓ Flag without reasoning ignored; ratio decides")


def test_time_expression_not_both():
    """A vague query keeps 'today' as a time context, never as a filter too."""
    print("\n── Test: Time Context vs Due Filter ──")
    parsed = QueryInterpreter(SearchSettings(), FakeUnderstanding({
        "dueDate": "today",
        "timeContext": "today",
    })).interpret("what should I do today", TODAY)

    assert parsed.is_vague
    assert parsed.due_date is None
    assert parsed.time_context.term == "today"
    assert parsed.time_context.until == TODAY
    print("  ✓ Conflict resolved to a time context")


def test_time_expression_same_window():
    """Different spellings of one period ('<= end-of-week' vs 'thisWeek') still resolve to exactly one."""
    print("\n── Test: Same Window, Different Terms ──")
    end_of_week = date(2025, 3, 16)
    payload = {
        "coreKeywords": ["report"],
        "dueDateRange": {"operator": "<=", "start": "end-of-week"},
        "timeContext": "thisWeek",
    }
    concrete = QueryInterpreter(SearchSettings(expansion_enabled=False),
                                FakeUnderstanding(payload)).interpret("report this week", TODAY)
    assert not concrete.is_vague
    assert concrete.due_date.operator == "<=" and concrete.due_date.start == end_of_week
    assert concrete.time_context is None
    print("  ✓ Concrete query keeps the filter")

    vague = QueryInterpreter(SearchSettings(expansion_enabled=False), FakeUnderstanding(
        dict(payload, coreKeywords=["what", "should", "work"]),
    )).interpret("what should I work on this week", TODAY)
    assert vague.is_vague
    assert vague.due_date is None
    assert vague.time_context.until == end_of_week
    print("  ✓ Vague query keeps the time context")


def test_property_only_query_skips_llm():
    print("\n── Test: Property-only Query ──")
    understanding = FakeUnderstanding({"coreKeywords": ["nope"]})
    parsed = QueryInterpreter(SearchSettings(), understanding).interpret("p1 d:today #work", TODAY)
    assert understanding.requests == []
    assert parsed.core_keywords == ()
    assert parsed.tags == ("work",)
    print("  ✓ No model call for pure property syntax")


def main():
    print("=" * 60)
    print("  QUERY EXTRACTION — SMOKE TEST")
    print("=" * 60)

    test_json_repair()
    test_strip_reasoning()
    test_payload_validation()
    test_extractor_regenerates_once()
    test_extractor_gives_up()
    test_interpreter_merges_llm_payload()
    test_interpreter_timeout_falls_back()
    test_interpreter_malformed_payload_falls_back()
    test_vague_flag_precedence()
    test_time_expression_not_both()
    test_time_expression_same_window()
    test_property_only_query_skips_llm()

    print("\n" + "=" * 60)
    print("  ✓ ALL TESTS PASSED")
    print("=" * 60)


if __name__ == "__main__":
    main()
