"""Heuristics that read an agent's final text and decide what it means."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence

NO_RESULT_TEXT = "(no result text)"

# Only the conclusion is checked; partial failures mid-run are not a task failure.
FAILURE_TAIL_CHARS = 500
PENDING_INPUT_MIN_QUESTIONS = 3

_FAILURE_PATTERNS = (
    re.compile(r"失敗しました"),
    re.compile(r"できません(でした)?"),
    re.compile(r"エラーが発生"),
    re.compile(r"認証.{0,10}(?:エラー|未設定|必要)"),
    re.compile(r"\b(?:failed to|unable to|could not|couldn't) complete\b", re.IGNORECASE),
    re.compile(r"\berror occurred\b", re.IGNORECASE),
    re.compile(r"No .{0,20} tokens? found", re.IGNORECASE),
    re.compile(r"authentication (?:failed|required|error)", re.IGNORECASE),
)
_QUESTION_MARK = re.compile(r"[?？]")


def detect_task_failure(result_text: str) -> bool:
    """True when the agent reports in its conclusion that it could not do the task."""

    tail = result_text[-FAILURE_TAIL_CHARS:]
    return any(pattern.search(tail) for pattern in _FAILURE_PATTERNS)


def detect_pending_input(result_text: str) -> bool:
    """True when the agent is asking the user several questions back."""

    return len(_QUESTION_MARK.findall(result_text)) >= PENDING_INPUT_MIN_QUESTIONS


def extract_final_text(payload: Mapping[str, object]) -> str:
    """Pick the agent's final summary from a result payload.

    Accepts either a flat ``result`` string or a ``content`` list of typed
    blocks, in which case only the last text block is kept.
    """

    content = payload.get("content")
    if isinstance(content, Sequence) and not isinstance(content, str):
        texts = [
            block["text"]
            for block in content
            if isinstance(block, Mapping)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        if texts:
            return texts[-1]
    result = payload.get("result")
    if isinstance(result, str) and result.strip():
        return result
    return NO_RESULT_TEXT
