import json
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from openai import OpenAI
from taskquery.config import config
from taskquery.errors import QueryParseError, TaskQueryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Structured output models ──────────────────────────────────────────────────

class AIUnderstanding(BaseModel):
    """Metadata the model reports about its own reading of the query."""
    model_config = ConfigDict(extra="ignore")

    detectedLanguage: Optional[str] = None
    correctedTypos: List[str] = []
    semanticMappings: Dict[str, str] = {}
    confidence: float = 0.5

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v):
        """Ensures confidence scores remain within the 0.0 to 1.0 range."""
        try:
            return max(0.0, min(1.0, float(v)))
        except (TypeError, ValueError):
            return 0.5

    @field_validator('correctedTypos', mode='before')
    @classmethod
    def coerce_typos(cls, v):
        if not isinstance(v, list):
            return []
        return [str(x) for x in v if isinstance(x, (str, int, float))]

    @field_validator('semanticMappings', mode='before')
    @classmethod
    def coerce_mappings(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): str(val) for k, val in v.items() if isinstance(val, (str, int, float))}


class DueDateRangePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    operator: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None


class LLMQueryPayload(BaseModel):
    """
    Shape the language-understanding collaborator must return.
    Field names follow the JSON the prompt asks for. Individual bad items
    (non-string keywords, unknown priority levels) are dropped rather than
    failing the whole payload; a payload of the wrong overall shape fails.
    """
    model_config = ConfigDict(extra="ignore")

    coreKeywords: List[str] = []
    keywords: List[str] = []
    priority: Optional[Union[List[int], str]] = None
    dueDate: Optional[str] = None
    dueDateRange: Optional[DueDateRangePayload] = None
    status: List[str] = []
    folder: Optional[str] = None
    tags: List[str] = []
    isVague: Optional[bool] = None
    vagueReasoning: Optional[str] = None
    timeContext: Optional[str] = None
    aiUnderstanding: AIUnderstanding = Field(default_factory=AIUnderstanding)

    @field_validator('coreKeywords', 'keywords', 'tags', mode='before')
    @classmethod
    def keep_strings(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            raise ValueError("expected a list of strings")
        return [s.strip() for s in v if isinstance(s, str) and s.strip()]

    @field_validator('priority', mode='before')
    @classmethod
    def coerce_priority(cls, v):
        if v is None or v == "":
            return None
        if isinstance(v, str) and v.strip().lower() in {"any", "all", "none"}:
            return v.strip().lower()
        items = v if isinstance(v, list) else [v]
        levels = []
        for item in items:
            try:
                level = int(item)
            except (TypeError, ValueError):
                continue
            if 1 <= level <= 4 and level not in levels:
                levels.append(level)
        return levels or None

    @field_validator('status', mode='before')
    @classmethod
    def coerce_status(cls, v):
        if v is None or v == "":
            return []
        if isinstance(v, str):
            v = [v]
        return [str(s) for s in v if isinstance(s, (str, int))]

    @field_validator('dueDate', 'folder', 'timeContext', 'vagueReasoning', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


# ── Prompts ───────────────────────────────────────────────────────────────────

QUERY_SYSTEM_PROMPT = (
    "You parse task-search queries for a note-taking app. "
    "You separate search keywords from task properties and answer with JSON only."
)

QUERY_PROMPT_TEMPLATE = """Parse this task search query.

Query: "{query}"

Languages for keyword expansion: {languages}
Expansion: {expansion}
Property vocabulary (category -> recognized terms):
{vocabulary}

Rules:
- Property phrases (priority, due date, status) become properties, NOT keywords.
- coreKeywords: the meaningful content words from the query, in query order, without stop words.
- keywords: coreKeywords first, then up to {max_equivalents} equivalents per core keyword per language.
- priority: list of levels 1 (highest) to 4, or "any" / "none".
- dueDate: one of today, tomorrow, overdue, future, any, none, week, next-week, month, next-month, or YYYY-MM-DD.
- dueDateRange: {{"operator": "<=|<|>=|>|between", "start": "...", "end": "..."}} for explicit ranges.
- status: category keys from the status vocabulary.
- timeContext: today, tomorrow, thisWeek, nextWeek, thisMonth when a time phrase only describes WHEN the user
  wants to work ("what should I do today") rather than a due-date filter ("due today"). Never set both
  timeContext and dueDate for the same phrase.
- isVague + vagueReasoning: set only when you are sure; a vague query is made of generic words
  ("what should I work on").

Return JSON:
{{
  "coreKeywords": [],
  "keywords": [],
  "priority": null,
  "dueDate": null,
  "dueDateRange": null,
  "status": [],
  "folder": null,
  "tags": [],
  "isVague": null,
  "vagueReasoning": null,
  "timeContext": null,
  "aiUnderstanding": {{"detectedLanguage": "en", "correctedTypos": [], "semanticMappings": {{}}, "confidence": 0.0}}
}}"""


REASONING_BLOCK_RE = re.compile(r"<(think|thinking|reasoning|thought)>.*?</\1>", re.DOTALL | re.IGNORECASE)


def _strip_reasoning(raw: str) -> str:
    """Removes <think>-style blocks some reasoning models prepend to their answer."""
    cleaned = REASONING_BLOCK_RE.sub("", raw or "")
    return cleaned.strip()


def _attempt_json_repair(raw: str) -> Optional[dict]:
    """
    Safety Fallback: Attempts to repair malformed JSON from the LLM.
    Handles reasoning blocks, markdown fences, prose around the object,
    control characters and trailing commas.
    """
    cleaned = _strip_reasoning(raw)

    # Strip markdown fences
    cleaned = re.sub(r'^```(?:json)?\s*', '', cleaned.strip())
    cleaned = re.sub(r'\s*```$', '', cleaned)

    # Keep only the outermost object
    start, end = cleaned.find('{'), cleaned.rfind('}')
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]

    # Strip non-printable control characters (except newlines/tabs)
    cleaned = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f]', '', cleaned)

    # Fix trailing commas before } or ]
    cleaned = re.sub(r',\s*([}\]])', r'\1', cleaned)

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def run_with_timeout(fn: Callable[[], T], timeout: float, error_cls: Type[TaskQueryError], label: str) -> T:
    """
    Runs a collaborator call on a worker thread and waits at most `timeout`
    seconds. Timeouts and collaborator exceptions surface as `error_cls`.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"taskquery-{label}")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as e:
        future.cancel()
        raise error_cls(f"{label} timed out after {timeout:.1f}s") from e
    except TaskQueryError:
        raise
    except Exception as e:
        raise error_cls(f"{label} failed: {e}") from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def resolve_provider(api_key: Optional[str] = None, model: Optional[str] = None):
    """Picks OpenAI or Groq from the key; returns (key, base_url, model)."""
    openai_key = os.environ.get("OPENAI_API_KEY") or config.get('openai_api_key')
    groq_key = os.environ.get("GROQ_API_KEY") or config.get('groq_api_key')

    resolved_key = api_key or openai_key or groq_key
    if not resolved_key:
        raise ValueError("No API key provided. Check your .env file.")

    if resolved_key.startswith("sk-") or (not api_key and openai_key):
        return resolved_key, "https://api.openai.com/v1", model or config['openai_model']
    return resolved_key, "https://api.groq.com/openai/v1", model or config['groq_model']


# ── LLM Extractor ─────────────────────────────────────────────────────────────

class LLMQueryExtractor:
    """
    Language-understanding collaborator backed by an OpenAI-compatible chat API.
    Turns a query request into a validated LLMQueryPayload.
    """
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[Any] = None, verbose: bool = False):
        """
        Args:
            api_key: Optional override for environment keys.
            model: Optional override for the default model choice.
            client: Pre-built OpenAI-compatible client (tests inject a fake).
            verbose: Logs raw JSON responses at INFO level.
        """
        if client is not None:
            self.client = client
            self.model = model or config['groq_model']
        else:
            resolved_key, base_url, self.model = resolve_provider(api_key, model)
            self.client = OpenAI(api_key=resolved_key, base_url=base_url)
        self.verbose = verbose

    def parse_query(self, request: Dict[str, Any]) -> LLMQueryPayload:
        """
        request keys: query, languages, max_equivalents, expansion_enabled,
        vocabulary, timeout.
        """
        user_prompt = QUERY_PROMPT_TEMPLATE.format(
            query=request["query"].replace('"', "'"),
            languages=", ".join(request.get("languages", [])) or "English",
            expansion="enabled" if request.get("expansion_enabled", True) else "disabled (keywords = coreKeywords)",
            max_equivalents=request.get("max_equivalents", 5),
            vocabulary=json.dumps(request.get("vocabulary", {}), ensure_ascii=False, indent=1),
        )
        parsed = self.complete_json(QUERY_SYSTEM_PROMPT, user_prompt, timeout=request.get("timeout", config['llm_timeout']))
        try:
            return LLMQueryPayload.model_validate(parsed)
        except ValidationError as e:
            raise QueryParseError(f"payload failed validation: {e.error_count()} error(s)") from e

    def complete_json(self, system_prompt: str, user_prompt: str, timeout: float, is_retry: bool = False) -> dict:
        """One chat call in JSON mode; repairs, then REGENERATES once, then gives up."""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=config['temperature'],
                max_tokens=config['max_tokens'],
                timeout=timeout,
            )
            raw_json = response.choices[0].message.content or ""
        except Exception as e:
            if not is_retry:
                logger.warning("[Interpreter] ⚠ LLM call failed (%s). Attempting REGENERATION...", e)
                return self.complete_json(system_prompt, user_prompt, timeout, is_retry=True)
            raise QueryParseError(f"LLM call failed: {e}") from e

        if self.verbose:
            logger.info("[Interpreter] Raw JSON response:\n%s", raw_json)

        parsed = None
        try:
            parsed = json.loads(_strip_reasoning(raw_json))
        except json.JSONDecodeError:
            parsed = _attempt_json_repair(raw_json)

        if not isinstance(parsed, dict):
            if not is_retry:
                logger.warning("[Interpreter] ⚠ Malformed JSON. Attempting REGENERATION...")
                return self.complete_json(system_prompt, user_prompt, timeout, is_retry=True)
            raise QueryParseError("malformed JSON after regeneration")
        return parsed
