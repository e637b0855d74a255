"""Pydantic models for data validation and schema enforcement.

This module defines schemas for:
- The canonical visualization graph (nodes, edges, metadata, progress)
- Guided task payloads (learning objective, key ideas, practice, exit ticket)
- Task plans and tutor configuration
- Chat transcript entries and engagement metrics
- Request/response data structures for the HTTP surface
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from mindtrail.heuristics import strip_pass_marker

logger = logging.getLogger("mindtrail.models")

NodeKind = Literal["concept", "question", "confusion", "example"]
EdgeKind = Literal["hierarchical", "related", "causal", "example"]
GraphType = Literal["mindmap", "conceptmap", "knowledgegraph"]
ViewType = Literal[
    "image_gallery",
    "video_player",
    "mindmap_editor",
    "table_editor",
    "text_editor",
    "math_editor",
    "interactive_experiment",
]

# Repeatable blank placeholder inside key-idea templates
BLANK_PLACEHOLDER = "__KEY__"

_OPTION_LINE = re.compile(r"^[A-D][.)、\s]", re.IGNORECASE)
_OPTION_PREFIX = re.compile(r"^[A-D][.)、\s]+", re.IGNORECASE)


# ============================================================================
# Visualization Graph Models
# ============================================================================


class Position(BaseModel):
    """Opaque canvas coordinates supplied by the editor surface."""

    x: float
    y: float


class VisualizationNode(BaseModel):
    """A single concept node in a learner's graph."""

    id: str = Field(..., min_length=1, description="Unique node ID within the graph")
    label: str = Field(..., description="Display text")
    kind: NodeKind = Field(default="concept", description="Node category")
    position: Optional[Position] = Field(default=None, description="Canvas position (not computed)")
    style: Optional[dict[str, str]] = Field(default=None, description="Optional visual hints")

    @property
    def is_confusion(self) -> bool:
        return self.kind == "confusion"


class VisualizationEdge(BaseModel):
    """A directed relation between two nodes."""

    id: str = Field(..., min_length=1, description="Unique edge ID within the graph")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    label: Optional[str] = Field(default=None, description="Optional relationship label")
    kind: EdgeKind = Field(default="hierarchical", description="Edge category")


class GraphMetadata(BaseModel):
    """Graph-level annotations. confusion_points is derived from node kinds."""

    model_config = ConfigDict(populate_by_name=True)

    central_concept: Optional[str] = Field(default=None, alias="centralConcept")
    confusion_points: Optional[list[str]] = Field(default=None, alias="confusionPoints")


class VisualizationGraph(BaseModel):
    """Canonical graph shared by the direct editor, the text DSL and diagram markup."""

    type: GraphType = Field(default="conceptmap", description="Graph flavour")
    nodes: list[VisualizationNode] = Field(default_factory=list)
    edges: list[VisualizationEdge] = Field(default_factory=list)
    metadata: GraphMetadata = Field(default_factory=GraphMetadata)

    @model_validator(mode="after")
    def check_integrity(self) -> "VisualizationGraph":
        """Ensure ids are unique and every edge references existing nodes."""
        node_ids = [n.id for n in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            duplicates = {nid for nid in node_ids if node_ids.count(nid) > 1}
            raise ValueError(f"Duplicate node IDs found: {duplicates}")

        edge_ids = [e.id for e in self.edges]
        if len(edge_ids) != len(set(edge_ids)):
            duplicates = {eid for eid in edge_ids if edge_ids.count(eid) > 1}
            raise ValueError(f"Duplicate edge IDs found: {duplicates}")

        known = set(node_ids)
        for edge in self.edges:
            if edge.source not in known or edge.target not in known:
                raise ValueError(
                    f"Edge {edge.id} references a missing node ({edge.source} -> {edge.target})"
                )
        return self

    def node_by_id(self, node_id: str) -> Optional[VisualizationNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> list[VisualizationEdge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> list[VisualizationEdge]:
        return [e for e in self.edges if e.target == node_id]

    def confusion_labels(self) -> list[str]:
        return [n.label for n in self.nodes if n.is_confusion]

    def with_type(self, graph_type: GraphType) -> "VisualizationGraph":
        """Copy of this graph relabelled as another flavour."""
        return self.model_copy(update={"type": graph_type}, deep=True)

    def root_node(self) -> Optional[VisualizationNode]:
        """First node without incoming edges, falling back to the first node."""
        targets = {e.target for e in self.edges}
        for node in self.nodes:
            if node.id not in targets:
                return node
        return self.nodes[0] if self.nodes else None

    def central_node(self) -> Optional[VisualizationNode]:
        """Node named by metadata.central_concept, else the root node."""
        central = self.metadata.central_concept
        if central:
            for node in self.nodes:
                if node.label == central:
                    return node
        return self.root_node()

    def refresh_metadata(self) -> None:
        """Recompute derived metadata after an in-place mutation."""
        self.metadata.confusion_points = self.confusion_labels() if self.nodes else None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict using the wire field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class VisualizationProgress(BaseModel):
    """Progress snapshot sent with every graph change notification."""

    total_nodes: int = Field(default=0, ge=0)
    total_edges: int = Field(default=0, ge=0)
    confusion_point_count: int = Field(default=0, ge=0)
    completion_rate: int = Field(default=0, ge=0, le=100)


# ============================================================================
# Guided Payload Models
# ============================================================================


class WhyItMatters(BaseModel):
    """Meaning anchor and advance organizer shown in the objective stage."""

    meaning_anchor: Optional[str] = None
    advance_organizer: Optional[str] = None


class KeyIdea(BaseModel):
    """Fill-in-the-blank template; each BLANK_PLACEHOLDER is one answer input."""

    text: str
    blanks: list[str] = Field(default_factory=list)

    @property
    def blank_count(self) -> int:
        return self.text.count(BLANK_PLACEHOLDER)

    def segments(self) -> list[str]:
        return self.text.split(BLANK_PLACEHOLDER)


class GuidedQuestion(BaseModel):
    """Practice question or exit-ticket question."""

    model_config = ConfigDict(populate_by_name=True)

    question: str
    options: Optional[list[str]] = None
    correct_answer: Optional[str] = Field(default=None, alias="correctAnswer")
    explanation: Optional[str] = None


class GuidedPayload(BaseModel):
    """Structured guided-learning content embedded in a task's content payload."""

    model_config = ConfigDict(populate_by_name=True)

    learning_objective: Optional[str] = Field(default=None, alias="learningObjective")
    why_it_matters: Optional[WhyItMatters] = Field(default=None, alias="whyItMatters")
    key_ideas: list[KeyIdea] = Field(default_factory=list, alias="keyIdeas")
    practice_questions: list[GuidedQuestion] = Field(default_factory=list, alias="practiceQuestions")
    exit_ticket: Optional[GuidedQuestion] = Field(default=None, alias="exitTicket")


def _validate_items(model: type[BaseModel], items: Any) -> list:
    """Validate list entries one by one, dropping the invalid ones."""
    if not isinstance(items, list):
        return []
    valid = []
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid %s entry: %s", model.__name__, e.errors()[0]["msg"])
    return valid


def parse_guided_payload(raw: Optional[str]) -> Optional[GuidedPayload]:
    """Parse the JSON guided payload of a task.

    Args:
        raw: JSON string from the task's content payload

    Returns:
        Parsed payload, or None when the payload is empty or not a JSON object
    """
    if not raw or not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    why = data.get("whyItMatters")
    if not isinstance(why, dict):
        design = data.get("taskDesignJson")
        why = design.get("why_it_matters") if isinstance(design, dict) else None
    why_it_matters = None
    if isinstance(why, dict) and (why.get("meaning_anchor") or why.get("advance_organizer")):
        why_it_matters = WhyItMatters(
            meaning_anchor=why.get("meaning_anchor") or None,
            advance_organizer=why.get("advance_organizer") or None,
        )

    exit_ticket = None
    raw_ticket = data.get("exitTicket")
    if isinstance(raw_ticket, dict):
        tickets = _validate_items(GuidedQuestion, [raw_ticket])
        exit_ticket = tickets[0] if tickets else None

    objective = data.get("learningObjective")
    return GuidedPayload(
        learning_objective=objective if isinstance(objective, str) and objective.strip() else None,
        why_it_matters=why_it_matters,
        key_ideas=_validate_items(KeyIdea, data.get("keyIdeas")),
        practice_questions=_validate_items(GuidedQuestion, data.get("practiceQuestions")),
        exit_ticket=exit_ticket,
    )


def split_question_options(question: str, options: Optional[list[str]] = None) -> tuple[str, list[str]]:
    """Separate a question stem from inline 'A. ...' option lines.

    Explicit options win. Inline options are only recognised when at least two
    option lines are present.
    """
    if options:
        return question, list(options)

    lines = [line.strip() for line in question.split("\n") if line.strip()]
    option_lines = [line for line in lines if _OPTION_LINE.match(line)]
    if len(option_lines) >= 2:
        stem_lines = [line for line in lines if not _OPTION_LINE.match(line)]
        cleaned = [_OPTION_PREFIX.sub("", line).strip() for line in option_lines]
        return "\n".join(stem_lines).strip() or question, cleaned
    return question, []


# ============================================================================
# Task Plan Models
# ============================================================================


class TutorConfig(BaseModel):
    """Per-task tutor persona."""

    model_config = ConfigDict(populate_by_name=True)

    tone: str = Field(default="Socratic", description="Tone of voice")
    system_instruction: str = Field(default="", alias="systemInstruction")


class Task(BaseModel):
    """A single task in the learner's plan."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    view_type: ViewType = Field(..., alias="viewType")
    description: str = ""
    output_goal: str = Field(default="", alias="outputGoal")
    tutor_config: TutorConfig = Field(default_factory=TutorConfig, alias="tutorConfig")
    evaluation_criteria: str = Field(default="", alias="evaluationCriteria")
    content_payload: Optional[str] = Field(default=None, alias="contentPayload")

    @field_validator("content_payload", mode="before")
    @classmethod
    def payload_as_json_string(cls, v: Any) -> Any:
        """Accept an inline JSON object as well as a JSON string."""
        if isinstance(v, (dict, list)):
            return json.dumps(v, ensure_ascii=False)
        return v

    @property
    def guided_payload(self) -> Optional[GuidedPayload]:
        return parse_guided_payload(self.content_payload)

    @property
    def is_guided(self) -> bool:
        payload = self.guided_payload
        return payload is not None and payload.learning_objective is not None


class TaskPlan(BaseModel):
    """Ordered task list supplied at session start."""

    model_config = ConfigDict(populate_by_name=True)

    tasks: list[Task] = Field(..., min_length=1, description="At least one task required")
    big_concept: Optional[str] = Field(default=None, alias="bigConcept")

    @field_validator("tasks")
    @classmethod
    def validate_unique_ids(cls, tasks: list[Task]) -> list[Task]:
        """Ensure all task IDs are unique."""
        task_ids = [t.id for t in tasks]
        if len(task_ids) != len(set(task_ids)):
            duplicates = [tid for tid in task_ids if task_ids.count(tid) > 1]
            raise ValueError(f"Duplicate task IDs found: {set(duplicates)}")
        return tasks


# ============================================================================
# Transcript & Metrics Models
# ============================================================================


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatMessage(BaseModel):
    """One transcript entry. Tutor text is stored raw, marker included."""

    role: Literal["learner", "tutor"]
    text: str
    timestamp: str = Field(default_factory=_utc_now)

    @property
    def display_text(self) -> str:
        return strip_pass_marker(self.text) if self.role == "tutor" else self.text


class EngagementMetrics(BaseModel):
    """Quantitative learner profile derived from the transcript and action log.

    Every field defaults to 0 so an empty log yields a fully numeric result.
    """

    average_input_length: float = 0.0
    total_inputs: int = 0
    short_inputs: int = 0
    long_inputs: int = 0
    total_questions: int = 0
    stuck_clicks: int = 0
    done_clicks: int = 0
    evaluate_clicks: int = 0
    total_session_time: int = 0
    average_time_between_actions: float = 0.0
    long_gaps: int = 0
    short_gaps: int = 0
    total_edits: int = 0
    mindmap_edits: int = 0
    table_edits: int = 0
    text_edits: int = 0
    math_edits: int = 0
    tasks_completed: int = 0
    tasks_skipped: int = 0
    task_switch_count: int = 0


# ============================================================================
# Request/Response Models
# ============================================================================


class ParseTextRequest(BaseModel):
    """Request body for parsing the text DSL."""

    text: str = Field(default="", max_length=20000)
    type: GraphType = "conceptmap"


class MarkupRequest(BaseModel):
    """Request body for converting diagram markup to a graph."""

    code: str = Field(default="", max_length=20000)


class StartSessionRequest(BaseModel):
    """Request body for starting a learning session."""

    plan: TaskPlan
    session_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class ChatMessageRequest(BaseModel):
    """Request body for sending a learner message."""

    message: str = Field(..., min_length=1, max_length=2000, description="Learner message")


class NodeCreateRequest(BaseModel):
    """Request body for creating a graph node."""

    label: str = Field(..., min_length=1)
    kind: NodeKind = "concept"
    position: Optional[Position] = None


class NodeUpdateRequest(BaseModel):
    """Request body for editing a graph node."""

    label: Optional[str] = Field(default=None, min_length=1)
    kind: Optional[NodeKind] = None
    position: Optional[Position] = None


class EdgeCreateRequest(BaseModel):
    """Request body for creating a graph edge."""

    source: str
    target: str
    label: Optional[str] = None
    kind: EdgeKind = "hierarchical"


class SurfaceContentRequest(BaseModel):
    """Request body for updating a non-graph editor surface."""

    surface: Literal["table", "text", "math", "markup", "dsl"]
    content: Any


class GuidedArtifactRequest(BaseModel):
    """Request body for recording a guided-step learner artifact."""

    artifact: Literal["blank", "choice", "practice_text", "exit_ticket"]
    idea_index: int = Field(default=0, ge=0)
    blank_index: int = Field(default=0, ge=0)
    question_index: int = Field(default=0, ge=0)
    option_index: int = Field(default=0, ge=0)
    value: str = ""
