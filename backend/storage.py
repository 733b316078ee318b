import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from taskquery.errors import TaskSourceUnavailable
from taskquery.task_schema import Task

logger = logging.getLogger(__name__)


class LocalTaskStore:
    """
    JSON-file task source. The file holds {"tasks": [...]} with one object per
    task in Task's field layout. fetch() applies a coarse pre-filter only;
    the search engine re-applies every filter itself.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> List[Task]:
        if not os.path.exists(self.path):
            raise TaskSourceUnavailable(f"task store not found: {self.path}")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise TaskSourceUnavailable(f"task store unreadable: {e}") from e

        rows = payload.get("tasks", []) if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            raise TaskSourceUnavailable("task store has no task list")

        tasks: List[Task] = []
        for i, row in enumerate(rows):
            try:
                tasks.append(Task.model_validate(row))
            except ValidationError as e:
                logger.warning("[Store] ⚠ Skipping malformed task #%d: %s", i, e.errors()[0].get("msg"))
        return tasks

    def save(self, tasks: Sequence[Task]) -> int:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump({"tasks": [t.to_storage_dict() for t in tasks]}, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)
        return len(tasks)

    def fetch(self, hints: Optional[Dict[str, Any]] = None) -> List[Task]:
        tasks = self.load()
        hints = hints or {}

        keywords = [k.lower() for k in hints.get("keywords") or [] if k]
        if keywords:
            tasks = [t for t in tasks if any(k in t.text.lower() for k in keywords)]

        tags = [t.lower().lstrip("#") for t in hints.get("tags") or [] if t]
        if tags:
            tasks = [t for t in tasks if any(w in tag for w in tags for tag in t.tags)]

        folder = (hints.get("folder") or "").lower().strip("/")
        if folder:
            tasks = [t for t in tasks if folder in (t.folder or "").lower()]

        logger.debug("[Store] fetch -> %d tasks", len(tasks))
        return tasks
