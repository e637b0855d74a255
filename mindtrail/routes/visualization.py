"""Stateless visualization conversion routes.

This module handles:
- Text DSL to graph parsing
- Diagram markup to graph and graph to markup conversion
- Completion scoring for an arbitrary graph
"""

import logging

from fastapi import APIRouter, HTTPException

from mindtrail.diagram import markup_to_graph, graph_to_markup
from mindtrail.errors import DiagramConversionError
from mindtrail.graph_editor import calculate_progress
from mindtrail.models import MarkupRequest, ParseTextRequest, VisualizationGraph
from mindtrail.text_dsl import parse_text

logger = logging.getLogger("mindtrail.routes.visualization")


router = APIRouter(prefix="/visualization", tags=["visualization"])


@router.post("/parse-text")
async def parse_text_route(request: ParseTextRequest):
    """Parse the line-oriented text DSL into a graph."""
    graph = parse_text(request.text, request.type)
    return {"graph": graph.to_dict(), "progress": calculate_progress(graph).model_dump()}


@router.post("/from-markup")
async def from_markup(request: MarkupRequest):
    """Parse mindmap or flowchart markup; problems come back as a diagnostic."""
    result = markup_to_graph(request.code)
    return {"graph": result.graph.to_dict(), "diagnostic": result.diagnostic}


@router.post("/to-markup")
async def to_markup(graph: VisualizationGraph):
    """Render a mindmap graph as diagram markup."""
    try:
        return {"code": graph_to_markup(graph)}
    except DiagramConversionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/completion")
async def completion(graph: VisualizationGraph):
    """Progress snapshot (counts and completion rate) for a graph."""
    return calculate_progress(graph).model_dump()
