"""Free-text predicate tables.

Tutor replies and learner log lines are classified by literal markers and
keyword/regex tables rather than by language understanding. The tables are
module-level so they can be tested and extended without touching call sites.
"""

import re
from typing import Dict, Tuple

# Literal token the tutor appends to approve a guided step
PASS_MARKER = "[STEP_PASS]"

_PASS_MARKER_RE = re.compile(r"\s*" + re.escape(PASS_MARKER) + r"\s*")

# Tutor phrases that signal a non-guided task is complete (regex, case-insensitive)
COMPLETION_PATTERNS: Tuple[str, ...] = (
    r"任务完成",
    r"可以点击.*下一个任务",
    r"可以进入下一个任务",
    r"下一个任务.*按钮",
    r"完成了这个任务",
    r"可以点击.*下一个",
    r"进入下一个任务",
    r"task (is )?complete",
    r"completed (this|the) task",
    r"click .*next task",
    r"move on to the next task",
)

# Substrings that mark a learner message as a question
QUESTION_KEYWORDS: Tuple[str, ...] = (
    "?",
    "？",
    "什么",
    "为什么",
    "如何",
    "怎么",
    "怎样",
    "能否",
    "可以吗",
)

# Log-line keywords per action or editor surface (matched case-insensitively)
ACTION_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "stuck": ("我卡住了", "stuck"),
    "done": ("我做完了", "done"),
    "evaluate": ("请求评价", "evaluate", "evaluation"),
    "mindmap": ("mindmap", "思维导图"),
    "table": ("table", "表格"),
    "text": ("text", "文本"),
    "math": ("math", "数学"),
    "task_switch": ("started task", "任务"),
}

_COMPILED_COMPLETION = tuple(re.compile(p, re.IGNORECASE) for p in COMPLETION_PATTERNS)


def has_pass_marker(text: str) -> bool:
    return PASS_MARKER in (text or "")


def strip_pass_marker(text: str) -> str:
    """Remove every pass marker occurrence for display."""
    return _PASS_MARKER_RE.sub(" ", text or "").strip()


def is_task_completion_message(text: str) -> bool:
    """True when a tutor reply states the current task is complete."""
    return any(p.search(text or "") for p in _COMPILED_COMPLETION)


def is_question(text: str) -> bool:
    return any(keyword in (text or "") for keyword in QUESTION_KEYWORDS)


def matches_action(entry: str, action: str) -> bool:
    """True when a log line mentions one of the keywords of `action`."""
    lowered = (entry or "").lower()
    return any(keyword in lowered for keyword in ACTION_KEYWORDS[action])
