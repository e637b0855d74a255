"""System instructions sent to the tutor channel.

Every tutor request carries a freshly composed instruction. Gating requests
embed the verification protocol and the literal pass marker or completion
sentence the session looks for in the reply.
"""

from typing import Optional

from mindtrail.heuristics import PASS_MARKER
from mindtrail.models import Task

GUIDED_STEP_TITLES = (
    "Clarify Objective",
    "Consume Material",
    "Summarize Key Ideas",
    "Practice",
    "Reflect",
)

LANGUAGE_NAMES = {"zh": "Simplified Chinese", "en": "English"}

# Sentence the tutor must use when a non-guided task is complete
COMPLETION_SENTENCES = {
    "zh": "很好！你已经完成了这个任务。你可以点击'下一个任务'按钮继续学习了。",
    "en": "Great! You have completed this task. You can click the 'Next task' button to continue.",
}

RESPONSE_STYLE = """## Response format
- Plain conversational text, no Markdown headings or bold
- At most one emoji per reply
- Vivid but concise: 2-4 sentences
- Use LaTeX ($...$) for formulas
- Never repeat what your previous message already said
- Only talk about the current step or task"""


def language_name(language: str) -> str:
    return LANGUAGE_NAMES.get(language, language)


def tutor_instruction(
    task: Task,
    surface_context: str,
    language: str,
    extra_context: Optional[str] = None,
) -> str:
    """Base instruction for ordinary chat turns on a task."""
    instruction = f"""You are a warm, patient learning tutor.

## Current task
- Title: {task.title}
- Description: {task.description}
- Goal: {task.output_goal}
- Tone: {task.tutor_config.tone}
- Language: {language_name(language)}

## Teacher instruction
{task.tutor_config.system_instruction or '(none)'}

## Learner's current work
{surface_context}

## Hint strategy
- Give ONE hint at a time and wait for the learner to try
- Guide with questions; do not hand out full answers

{RESPONSE_STYLE}"""
    if extra_context:
        instruction += f"\n\n## Additional context\n{extra_context}"
    return instruction


def stuck_instruction(surface_context: str, guided_context: Optional[str] = None) -> str:
    """Hidden context for the "I'm stuck" button."""
    return f"""Learner clicked "I'm stuck". Context: {surface_context}{guided_context or ''}

CRITICAL: Give hints STEP BY STEP, not all at once.
- Give ONLY ONE hint in this response (2-3 sentences)
- Wait for the learner to respond before giving the next hint
- Only discuss the CURRENT step or task
- Do NOT give the answer directly"""


def step_verification_instruction(
    step: int,
    task: Task,
    progress_summary: str,
    lightweight: bool,
) -> str:
    """Hidden context for "I'm done" on a guided step."""
    title = GUIDED_STEP_TITLES[step - 1]
    review = (
        "This is a lightweight step (reading/watching). Acknowledge it and approve directly."
        if lightweight
        else "Review the learner's work for this step. Be encouraging but check completeness."
    )
    return f"""Learner clicked "I'm done" for guided step {step}: "{title}".
Task: {task.title}
Goal: {task.output_goal}
{progress_summary}

STEP VERIFICATION PROTOCOL (guided flow):
- You are verifying step {step}/{len(GUIDED_STEP_TITLES)}: "{title}".
- {review}
- Vivid but concise, 2-4 sentences.
- Do NOT mention other steps or unrelated concepts.
- CRITICAL: If the step is satisfactorily completed, you MUST end your reply with the EXACT marker: {PASS_MARKER}
- If the step is NOT complete, give ONE specific suggestion and encourage a retry. Do NOT include {PASS_MARKER}.
- Never include {PASS_MARKER} unless you truly approve this step."""


def completion_check_instruction(task: Task, surface_context: str, language: str) -> str:
    """Hidden context for "I'm done" on a non-guided task."""
    sentence = COMPLETION_SENTENCES.get(language, COMPLETION_SENTENCES["en"])
    return f"""Learner clicked "I'm done". Context: {surface_context}
Evaluation criteria: {task.evaluation_criteria}
Output goal: {task.output_goal}

CRITICAL TASK COMPLETION PROTOCOL:
1. Review the work against the output goal: "{task.output_goal}"
2. If it meets the core requirements, give positive feedback first
3. If there are gaps, give 1-2 specific suggestions without being overly strict
4. MOST IMPORTANT: if the task is substantially complete you MUST explicitly say:
   "{sentence}"
5. Do not keep asking for more work once the core goal is met"""


def transition_instruction(
    previous_task: Task,
    previous_context: str,
    next_task: Task,
    language: str,
) -> str:
    """Single instruction producing exactly one transition turn between tasks."""
    return f"""You are the learner's tutor. Write ONE short transition message.

[Completed task]
- Title: {previous_task.title}
- Goal: {previous_task.output_goal}
- Evaluation criteria: {previous_task.evaluation_criteria}
- Learner's final state: {previous_context}

[Next task]
- Title: {next_task.title}
- Goal: {next_task.output_goal or 'Read the task description'}

The message MUST contain both:
1) ONE sentence of feedback on the completed task (praise plus one suggestion)
2) ONE sentence orienting the learner to the next task (what to do first)
Warm and concise, no Markdown, language: {language_name(language)}.
Do not ask the learner to redo the previous task."""


# Visible learner utterances for the console buttons
BUTTON_UTTERANCES = {
    "stuck": {"zh": "AI 老师，我卡住了，能给我一些提示吗？", "en": "I'm stuck, can you give me a hint?"},
    "done": {"zh": "我做完了，请帮我看看。", "en": "I'm done, please check my work."},
}

# Shown in place of a tutor reply when the channel fails
APOLOGY_MESSAGES = {
    "zh": "连接错误，请重试。",
    "en": "Connection error, please try again.",
}


def button_utterance(button: str, language: str) -> str:
    texts = BUTTON_UTTERANCES[button]
    return texts.get(language, texts["en"])


def apology_message(language: str) -> str:
    return APOLOGY_MESSAGES.get(language, APOLOGY_MESSAGES["en"])
