# taskquery/errors.py

from __future__ import annotations


class TaskQueryError(Exception):
    """Base class for every error raised by the query pipeline."""


class QueryParseError(TaskQueryError):
    """
    The language-understanding collaborator was unreachable, timed out, or
    answered with a payload that failed validation. Always recoverable: the
    interpreter falls back to the heuristic parser.
    """


class AnalysisError(TaskQueryError):
    """The downstream analysis collaborator failed; the ranked list stands without narrative."""


class TaskSourceUnavailable(TaskQueryError):
    """The task source could not produce a snapshot. This one is fatal for the query."""
