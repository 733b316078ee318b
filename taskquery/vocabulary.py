# taskquery/vocabulary.py

from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from taskquery.settings import SearchSettings


CJK_CHARS = "一-鿿㐀-䶿豈-﫿぀-ゟ゠-ヿ"
CJK_RE = re.compile(f"[{CJK_CHARS}]")
CJK_SPLIT_RE = re.compile(f"([{CJK_CHARS}]+)")
WORD_RE = re.compile(r"[^\W_]+(?:['\-][^\W_]+)*")
SWEDISH_HINT_RE = re.compile(r"[åäö]|\b(och|att|jag|inte|uppgift|idag|imorgon|vecka)\b", re.IGNORECASE)
CJK_PARTICLE_RE = re.compile(r"[的了吗呢啊吧我]")


# Articles, prepositions, pronouns and particles. Never keywords.
STOP_WORDS = frozenset({
    # English
    "the", "a", "an", "and", "or", "but", "for", "of", "with", "by", "from", "as", "to", "in", "on", "at",
    "into", "about", "is", "was", "are", "were", "be", "been", "am", "it", "its", "this", "that", "these",
    "those", "i", "me", "my", "mine", "we", "our", "us", "you", "your", "all", "any", "some", "there",
    "show", "list", "find", "give", "please", "just", "also", "then",
    # Chinese particles
    "我", "的", "了", "吗", "呢", "啊", "吧", "和", "与", "在", "把", "给", "哪些", "如何",
    # Swedish
    "och", "att", "det", "den", "en", "ett", "jag", "mig", "min", "mina", "på", "för", "med", "av", "till", "om", "som",
    # German / Spanish / French articles
    "der", "die", "das", "und", "el", "la", "los", "las", "y", "le", "les", "des", "et",
})

# Words that carry no search intent on their own. A query made mostly of
# these is vague.
GENERIC_WORDS = frozenset({
    # English question words
    "what", "when", "where", "which", "how", "why", "who", "whom", "whose",
    # English generic verbs
    "do", "does", "did", "doing", "done", "make", "makes", "made", "making", "work", "works", "worked",
    "working", "get", "gets", "got", "getting", "go", "goes", "going", "take", "takes", "handle", "focus",
    "start", "next", "first", "now", "up", "on",
    # English modal and auxiliary verbs
    "should", "could", "would", "might", "must", "can", "may", "shall", "will",
    "need", "needs", "needed", "have", "has", "had", "want", "wants",
    # English generic nouns
    "task", "tasks", "item", "items", "thing", "things", "job", "jobs", "stuff", "matter", "todo", "todos",
    # Chinese
    "什么", "怎么", "哪里", "哪个", "为什么", "怎样", "谁", "做", "可以", "能", "应该", "需要", "有", "要",
    "干", "搞", "处理", "任务", "事情", "东西", "工作", "事",
    # Swedish
    "vad", "när", "var", "vilken", "vilka", "hur", "varför", "vem", "göra", "gör", "arbeta", "kan",
    "ska", "skulle", "behöver", "har", "vill", "uppgift", "uppgifter", "sak", "saker", "arbete", "jobb",
    # German
    "was", "wann", "wo", "wie", "warum", "machen", "tun", "sollte", "aufgabe", "aufgaben", "sache",
    # Spanish
    "qué", "cuándo", "dónde", "cómo", "hacer", "debo", "tarea", "tareas", "cosa", "cosas",
    # French
    "quoi", "quand", "où", "comment", "faire", "dois", "tâche", "tâches", "chose", "choses",
})


BUILTIN_PRIORITY_TERMS: Dict[str, Tuple[str, ...]] = {
    "general": ("priority", "prio", "important", "优先级", "优先", "重要", "prioritet", "viktig"),
    "1": ("urgent", "critical", "highest", "high", "top", "紧急", "最高", "高", "关键", "brådskande", "hög", "högst", "kritisk"),
    "2": ("medium", "normal", "中等", "中", "普通", "medel"),
    "3": ("low", "minor", "低", "次要", "låg", "mindre"),
    "4": ("lowest", "trivial", "最低", "lägst"),
}

BUILTIN_DUE_TERMS: Dict[str, Tuple[str, ...]] = {
    "general": ("due", "deadline", "截止", "截止日期", "到期", "期限", "förfallodatum", "senast"),
    "today": ("today", "今天", "今日", "idag"),
    "tomorrow": ("tomorrow", "明天", "imorgon"),
    "overdue": ("overdue", "past due", "过期", "逾期", "försenad"),
    "week": ("this week", "本周", "这周", "denna vecka"),
    "next-week": ("next week", "下周", "nästa vecka"),
    "month": ("this month", "本月", "这个月", "denna månad"),
    "next-month": ("next month", "下个月", "nästa månad"),
    "last-week": ("last week", "上周", "förra veckan"),
    "last-month": ("last month", "上个月", "förra månaden"),
    "future": ("upcoming", "future", "未来", "将来", "kommande"),
}

BUILTIN_STATUS_TERMS: Dict[str, Tuple[str, ...]] = {
    "general": ("status", "state", "状态", "进度", "tillstånd"),
    "open": ("open", "pending", "incomplete", "unstarted", "未完成", "待办", "待处理", "öppen", "väntande"),
    "inProgress": ("in progress", "in-progress", "ongoing", "wip", "进行中", "正在做", "处理中", "pågående"),
    "completed": ("completed", "finished", "closed", "resolved", "已完成", "完成", "klar", "färdig", "slutförd"),
    "cancelled": ("cancelled", "canceled", "abandoned", "dropped", "已取消", "取消", "放弃", "avbruten", "inställd"),
}

# Offline equivalents used when the language-understanding collaborator is
# unavailable. Keys are lowercase English or Chinese heads.
STATIC_EQUIVALENTS: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "fix": {"English": ("repair", "resolve", "patch"), "中文": ("修复", "修改", "解决"), "Svenska": ("fixa", "åtgärda")},
    "bug": {"English": ("defect", "error", "issue"), "中文": ("错误", "缺陷", "漏洞"), "Svenska": ("fel", "bugg")},
    "meeting": {"English": ("call", "sync", "standup"), "中文": ("会议", "开会"), "Svenska": ("möte",)},
    "write": {"English": ("draft", "compose"), "中文": ("写", "撰写", "编写"), "Svenska": ("skriva",)},
    "review": {"English": ("check", "audit", "inspect"), "中文": ("审查", "检查", "评审"), "Svenska": ("granska",)},
    "email": {"English": ("mail", "message", "reply"), "中文": ("邮件", "回复"), "Svenska": ("mejl", "e-post")},
    "report": {"English": ("summary", "writeup"), "中文": ("报告", "汇报"), "Svenska": ("rapport",)},
    "plan": {"English": ("schedule", "roadmap", "organize"), "中文": ("计划", "规划", "安排"), "Svenska": ("planera", "plan")},
    "test": {"English": ("verify", "qa"), "中文": ("测试", "验证"), "Svenska": ("testa",)},
    "deploy": {"English": ("release", "ship", "launch"), "中文": ("部署", "发布", "上线"), "Svenska": ("driftsätta",)},
    "develop": {"English": ("build", "implement", "code"), "中文": ("开发", "实现", "编程"), "Svenska": ("utveckla",)},
    "design": {"English": ("layout", "mockup"), "中文": ("设计",), "Svenska": ("designa",)},
    "doc": {"English": ("documentation", "docs", "readme"), "中文": ("文档", "说明"), "Svenska": ("dokumentation",)},
    "buy": {"English": ("purchase", "order", "shop"), "中文": ("买", "购买"), "Svenska": ("köpa",)},
    "call": {"English": ("phone", "ring"), "中文": ("打电话", "联系"), "Svenska": ("ringa",)},
    "修复": {"English": ("fix", "repair"), "中文": ("修改", "解决")},
    "开发": {"English": ("develop", "build", "implement"), "中文": ("实现", "编程")},
    "会议": {"English": ("meeting", "sync"), "中文": ("开会",)},
}


# -----------------------------
# Text helpers
# -----------------------------

def contains_cjk(text: str) -> bool:
    return bool(CJK_RE.search(text or ""))


def detect_language(text: str) -> str:
    if contains_cjk(text):
        return "zh"
    if SWEDISH_HINT_RE.search(text or ""):
        return "sv"
    return "en"


def split_words(text: str) -> List[str]:
    """Lowercase word tokens; CJK runs are kept whole."""
    out: List[str] = []
    for segment in CJK_SPLIT_RE.split((text or "").lower()):
        if not segment:
            continue
        if CJK_RE.match(segment):
            out.extend(p for p in CJK_PARTICLE_RE.split(segment) if p)
        else:
            out.extend(WORD_RE.findall(segment))
    return out


def is_stop_word(word: str) -> bool:
    w = word.lower()
    if w in STOP_WORDS:
        return True
    # single non-CJK characters carry nothing
    return len(w) == 1 and not contains_cjk(w)


def dedupe_keywords(terms: Iterable[str], substring_overlap: bool = True, keep: Iterable[str] = ()) -> List[str]:
    """
    Exact + substring-overlap dedupe, first seen wins.

    Terms in `keep` are always retained and count as already seen. With
    substring_overlap=False, only CJK terms are collapsed by containment
    (a CJK run and its sub-run are the same word; "fix" and "prefix" are not).
    """
    kept: List[str] = []
    for term in keep:
        t = term.strip().lower()
        if t and t not in kept:
            kept.append(t)
    for term in terms:
        t = term.strip().lower()
        if not t or t in kept:
            continue
        overlaps = False
        for existing in kept:
            if not substring_overlap and not (contains_cjk(t) and contains_cjk(existing)):
                continue
            if t in existing or existing in t:
                overlaps = True
                break
        if not overlaps:
            kept.append(t)
    return kept


def generic_lexicon(settings: SearchSettings) -> frozenset:
    return GENERIC_WORDS | frozenset(w.lower() for w in settings.generic_words)


def is_generic(keyword: str, lexicon: frozenset) -> bool:
    k = keyword.strip().lower()
    if k in lexicon:
        return True
    if contains_cjk(k):
        # CJK runs are unsegmented: 什么任务 is generic if it is built from generic parts only
        rest = k
        for word in sorted((w for w in lexicon if contains_cjk(w)), key=len, reverse=True):
            rest = rest.replace(word, "")
        return rest == "" or all(ch in "的了吗呢啊吧我" for ch in rest)
    return False


def vagueness_ratio(keywords: List[str], lexicon: frozenset) -> float:
    if not keywords:
        return 0.0
    return sum(1 for k in keywords if is_generic(k, lexicon)) / len(keywords)


def static_equivalents(keyword: str, languages: Iterable[str], limit: int) -> List[str]:
    entry = STATIC_EQUIVALENTS.get(keyword.lower())
    if not entry or limit <= 0:
        return []
    out: List[str] = []
    for lang in languages:
        out.extend(_lookup_language(entry, lang)[:limit])
    return out


def _lookup_language(entry: Dict[str, Tuple[str, ...]], language: str) -> Tuple[str, ...]:
    lang = language.strip().lower()
    for key, values in entry.items():
        k = key.lower()
        if k == lang or k.startswith(lang[:2]) or lang.startswith(k[:2]):
            return values
    if lang in {"zh", "chinese", "中文", "简体中文"}:
        return entry.get("中文", ())
    return ()


# -----------------------------
# Property vocabulary
# -----------------------------

def _split_camel(name: str) -> str:
    return re.sub(r"(?<=[a-z])(?=[A-Z])", " ", name).lower()


@dataclass(frozen=True)
class PropertyVocabulary:
    """
    Term tables for priority, due date and status.

    Built by merging three layers in fixed precedence: user-defined terms,
    built-in terms, then terms derived from the status mapping. A term is owned
    by the first layer that claims it.
    """
    priority: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    due_date: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    status: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def build(cls, settings: SearchSettings) -> "PropertyVocabulary":
        user = settings.user_property_terms
        derived_status: Dict[str, Tuple[str, ...]] = {}
        for category in settings.status_mapping:
            derived_status[category] = tuple({category.lower(), _split_camel(category)})

        return cls(
            priority=_merge_layers([user.get("priority", {}), BUILTIN_PRIORITY_TERMS]),
            due_date=_merge_layers([user.get("dueDate", user.get("due_date", {})), BUILTIN_DUE_TERMS]),
            status=_merge_layers([user.get("status", {}), BUILTIN_STATUS_TERMS, derived_status]),
        )

    def lookup(self, table: str, term: str) -> Optional[str]:
        t = term.strip().lower()
        for key, terms in getattr(self, table).items():
            if t in terms:
                return key
        return None

    def phrases(self, table: str, exclude_general: bool = True) -> List[Tuple[str, str]]:
        """(phrase, key) pairs, longest phrase first so 'past due' beats 'due'."""
        pairs = [
            (term, key)
            for key, terms in getattr(self, table).items()
            if not (exclude_general and key == "general")
            for term in terms
        ]
        return sorted(pairs, key=lambda p: len(p[0]), reverse=True)

    def as_prompt_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            "priority": {k: list(v) for k, v in self.priority.items()},
            "dueDate": {k: list(v) for k, v in self.due_date.items()},
            "status": {k: list(v) for k, v in self.status.items()},
        }


def _merge_layers(layers: List[Dict[str, Iterable[str]]]) -> Dict[str, Tuple[str, ...]]:
    owner: Dict[str, str] = {}
    merged: Dict[str, List[str]] = {}
    for layer in layers:
        for key, terms in layer.items():
            bucket = merged.setdefault(str(key), [])
            for term in terms:
                t = str(term).strip().lower()
                if t and t not in owner:
                    owner[t] = str(key)
                    bucket.append(t)
    return {k: tuple(v) for k, v in merged.items()}
