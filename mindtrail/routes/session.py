"""Learning session routes for Mindtrail.

This module handles:
- Session creation, state and restart
- Chat, "I'm stuck" and "I'm done" requests to the tutor
- Guided step artifacts and navigation
- Graph edits and editor surface updates
- Task advancement and course completion

Sessions live in process memory, one LearningSession per id.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from mindtrail.config import DATABASE_PATH
from mindtrail.database import RESUME_KEY, SqliteProgressSink, SqliteResumeSlot
from mindtrail.errors import MindtrailError, SessionFinishedError
from mindtrail.models import (
    ChatMessageRequest,
    EdgeCreateRequest,
    GuidedArtifactRequest,
    NodeCreateRequest,
    NodeUpdateRequest,
    StartSessionRequest,
    SurfaceContentRequest,
)
from mindtrail.session import LearningSession
from mindtrail.tutor_channel import LLMClient, TutorChannel

logger = logging.getLogger("mindtrail.routes.session")


router = APIRouter(prefix="/sessions", tags=["session"])

_sessions: dict[str, LearningSession] = {}
_channel: Optional[LLMClient] = None


def get_channel() -> TutorChannel:
    """Shared tutor channel; overridden in tests."""
    global _channel
    if _channel is None:
        _channel = LLMClient()
    return _channel


def get_learning_session(session_id: str) -> LearningSession:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


def close_all_sessions() -> None:
    for session in _sessions.values():
        session.close()
    _sessions.clear()


@contextmanager
def translate_errors():
    """Map engine errors onto HTTP status codes."""
    try:
        yield
    except SessionFinishedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except (MindtrailError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _on_api_key_error() -> None:
    logger.error("Tutor backend rejected the configured API key or model; check LLM_* settings")


# ============================================================================
# Session Lifecycle
# ============================================================================

@router.post("")
async def start_session(request: StartSessionRequest, channel: TutorChannel = Depends(get_channel)):
    """Create a session for a task plan, resuming the stored task index when the id is known."""
    resume_slot = None
    if request.session_id:
        resume_slot = SqliteResumeSlot(f"{RESUME_KEY}:{request.session_id}", DATABASE_PATH)
        previous = _sessions.pop(request.session_id, None)
        if previous is not None:
            previous.close()

    session = LearningSession(
        request.plan,
        channel,
        resume_slot=resume_slot,
        progress_sink=SqliteProgressSink(DATABASE_PATH),
        on_api_key_error=_on_api_key_error,
        session_id=request.session_id,
    )
    _sessions[session.session_id] = session
    logger.info("Started session %s (%d tasks)", session.session_id, len(request.plan.tasks))
    return session.snapshot()


@router.get("/{session_id}")
async def get_state(session: LearningSession = Depends(get_learning_session)):
    return session.snapshot()


@router.delete("/{session_id}")
async def close_session(session_id: str, session: LearningSession = Depends(get_learning_session)):
    session.close()
    _sessions.pop(session_id, None)
    return {"closed": session_id}


@router.post("/{session_id}/restart")
async def restart(session: LearningSession = Depends(get_learning_session)):
    session.restart()
    return session.snapshot()


# ============================================================================
# Tutor Conversation
# ============================================================================

@router.post("/{session_id}/messages")
async def send_message(request: ChatMessageRequest, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        reply = await session.send_message(request.message)
    return {"reply": reply, "state": session.snapshot()}


@router.post("/{session_id}/stuck")
async def stuck(session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        reply = await session.stuck()
    return {"reply": reply, "state": session.snapshot()}


@router.post("/{session_id}/done")
async def done(session: LearningSession = Depends(get_learning_session)):
    """Ask the tutor to verify the current guided step or task."""
    with translate_errors():
        reply = await session.done()
    return {"reply": reply, "state": session.snapshot()}


# ============================================================================
# Progression
# ============================================================================

@router.post("/{session_id}/advance")
async def advance(skip_guided: bool = False, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        outcome = await session.advance(skip_guided=skip_guided)
    return {"outcome": outcome, "state": session.snapshot()}


@router.post("/{session_id}/finish")
async def finish(session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        metrics = await session.finish()
    return {"metrics": metrics.model_dump(), "report": session.report, "state": session.snapshot()}


@router.post("/{session_id}/guided/steps/{step}")
async def enter_guided_step(step: int, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        session.enter_guided_step(step)
    return session.snapshot()


@router.post("/{session_id}/guided/artifacts")
async def record_guided_artifact(
    request: GuidedArtifactRequest, session: LearningSession = Depends(get_learning_session)
):
    with translate_errors():
        session.record_guided_artifact(request)
    return session.snapshot()


# ============================================================================
# Graph Edits & Editor Surfaces
# ============================================================================

@router.post("/{session_id}/graph/nodes")
async def add_node(request: NodeCreateRequest, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        node = await session.add_node(request.label, request.kind, request.position)
    return {"node": node.model_dump(exclude_none=True), "state": session.snapshot()}


@router.patch("/{session_id}/graph/nodes/{node_id}")
async def update_node(
    node_id: str, request: NodeUpdateRequest, session: LearningSession = Depends(get_learning_session)
):
    with translate_errors():
        node = await session.update_node(
            node_id, label=request.label, position=request.position, kind=request.kind
        )
    return {"node": node.model_dump(exclude_none=True), "state": session.snapshot()}


@router.post("/{session_id}/graph/nodes/{node_id}/confusion")
async def mark_confusion(node_id: str, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        node = await session.mark_confusion(node_id)
    return {"node": node.model_dump(exclude_none=True), "state": session.snapshot()}


@router.delete("/{session_id}/graph/nodes/{node_id}")
async def delete_node(node_id: str, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        await session.delete_node(node_id)
    return session.snapshot()


@router.post("/{session_id}/graph/edges")
async def add_edge(request: EdgeCreateRequest, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        edge = await session.add_edge(request.source, request.target, request.label, request.kind)
    return {"edge": edge.model_dump(exclude_none=True), "state": session.snapshot()}


@router.delete("/{session_id}/graph/edges/{edge_id}")
async def delete_edge(edge_id: str, session: LearningSession = Depends(get_learning_session)):
    with translate_errors():
        await session.delete_edge(edge_id)
    return session.snapshot()


@router.put("/{session_id}/surfaces")
async def update_surface(request: SurfaceContentRequest, session: LearningSession = Depends(get_learning_session)):
    """Store editor content; dsl and markup surfaces rebuild the graph."""
    diagnostic = None
    with translate_errors():
        if request.surface == "dsl":
            await session.apply_dsl(str(request.content or ""))
        elif request.surface == "markup":
            result = await session.apply_markup(str(request.content or ""))
            diagnostic = result.diagnostic
        else:
            session.update_surface(request.surface, request.content)
    return {"diagnostic": diagnostic, "state": session.snapshot()}
