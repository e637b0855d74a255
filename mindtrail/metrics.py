"""Engagement metrics extracted from the transcript and the action log.

Pure and deterministic: the same transcript and log always produce the same
EngagementMetrics. Log lines look like "[HH:MM:SS] text"; a line whose
timestamp cannot be read still counts for keyword matching.
"""

import logging
import re
from typing import Optional, Sequence

from mindtrail.heuristics import is_question, matches_action
from mindtrail.models import ChatMessage, EngagementMetrics

# pylint: disable=broad-exception-caught

logger = logging.getLogger("mindtrail.metrics")

_TIMESTAMP_RE = re.compile(r"\[(\d{2}):(\d{2}):(\d{2})\]")

SHORT_INPUT_CHARS = 10
LONG_INPUT_CHARS = 200
LONG_GAP_SECONDS = 300
SHORT_GAP_SECONDS = 30
MAX_GAP_SECONDS = 86400

_EDIT_SURFACES = ("mindmap", "table", "text", "math")
_CLICK_ACTIONS = ("stuck", "done", "evaluate", "task_switch")


def parse_log_timestamp(entry: str) -> Optional[int]:
    """Seconds since midnight from a "[HH:MM:SS]" prefix, or None."""
    match = _TIMESTAMP_RE.search(entry)
    if match is None:
        return None
    hours, minutes, seconds = (int(g) for g in match.groups())
    if minutes > 59 or seconds > 59 or hours > 23:
        return None
    return hours * 3600 + minutes * 60 + seconds


def _time_gaps(timestamps: list[int]) -> list[int]:
    ordered = sorted(timestamps)
    gaps = []
    for previous, current in zip(ordered, ordered[1:]):
        gap = current - previous
        if 0 < gap < MAX_GAP_SECONDS:
            gaps.append(gap)
    return gaps


def extract_engagement_metrics(
    messages: Sequence[ChatMessage],
    log: Sequence[str],
    total_tasks: int,
) -> EngagementMetrics:
    """Build the learner's engagement profile at session end.

    Args:
        messages: Full transcript; only learner messages count as inputs
        log: Action log lines, "[HH:MM:SS] text"
        total_tasks: Number of tasks in the plan (all reached at session end)

    Returns:
        Fully populated metrics; empty inputs give all zeros
    """
    inputs = [m.text for m in messages if m.role == "learner"]
    lengths = [len(text) for text in inputs]

    timestamps: list[int] = []
    clicks = dict.fromkeys(_CLICK_ACTIONS, 0)
    edits = dict.fromkeys(_EDIT_SURFACES, 0)

    for entry in log:
        try:
            timestamp = parse_log_timestamp(entry)
            if timestamp is not None:
                timestamps.append(timestamp)
            for action in _CLICK_ACTIONS:
                if matches_action(entry, action):
                    clicks[action] += 1
            for surface in _EDIT_SURFACES:
                if matches_action(entry, surface):
                    edits[surface] += 1
        except Exception as e:
            logger.warning("Skipping unreadable log line %r: %s", entry, e)

    gaps = _time_gaps(timestamps)
    session_time = max(timestamps) - min(timestamps) if timestamps else 0

    return EngagementMetrics(
        average_input_length=sum(lengths) / len(lengths) if lengths else 0.0,
        total_inputs=len(inputs),
        short_inputs=sum(1 for n in lengths if n < SHORT_INPUT_CHARS),
        long_inputs=sum(1 for n in lengths if n > LONG_INPUT_CHARS),
        total_questions=sum(1 for text in inputs if is_question(text)),
        stuck_clicks=clicks["stuck"],
        done_clicks=clicks["done"],
        evaluate_clicks=clicks["evaluate"],
        total_session_time=session_time,
        average_time_between_actions=sum(gaps) / len(gaps) if gaps else 0.0,
        long_gaps=sum(1 for g in gaps if g > LONG_GAP_SECONDS),
        short_gaps=sum(1 for g in gaps if g < SHORT_GAP_SECONDS),
        total_edits=sum(edits.values()),
        mindmap_edits=edits["mindmap"],
        table_edits=edits["table"],
        text_edits=edits["text"],
        math_edits=edits["math"],
        tasks_completed=max(total_tasks, 0),
        tasks_skipped=0,
        task_switch_count=clicks["task_switch"],
    )
