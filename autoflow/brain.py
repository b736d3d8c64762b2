"""
Boundary of the AI decision node.

The graph runner hands an ``ai.brain`` node to a ``BrainCollaborator`` along
with a ``BrainContext`` describing where the node sits in the graph, and
follows whatever route comes back. The provider behind the collaborator is
not part of this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from .graph_model import FlowNode, ROUTE_OUT, WorkflowGraph

PREVIEW_MAX_KEYS = 8
PREVIEW_MAX_CHARS = 120
TRUNCATION_SUFFIX = "...[truncated]"


@dataclass
class BrainResult:
    route: str
    tool_calls_executed: int = 0
    turns: int = 0
    message: str = ""


@dataclass
class BrainContext:
    workflow_id: str
    workflow_name: str
    run_id: str
    node_id: str
    node_neighborhood: Optional[Dict[str, List[Dict[str, Any]]]] = None
    last_found_image: Optional[Dict[str, Any]] = None


class BrainCollaborator(Protocol):
    def execute_node(self, node: FlowNode, context: BrainContext) -> BrainResult: ...


def summarize_config(
    data: Any,
    max_keys: int = PREVIEW_MAX_KEYS,
    max_chars: int = PREVIEW_MAX_CHARS,
) -> Dict[str, Any]:
    """First ``max_keys`` entries of a node config with long strings cut short."""
    if not isinstance(data, dict):
        return {}
    preview: Dict[str, Any] = {}
    for key, value in list(data.items())[:max_keys]:
        if isinstance(value, str) and len(value) > max_chars:
            preview[key] = value[:max_chars] + TRUNCATION_SUFFIX
        else:
            preview[key] = value
    return preview


def build_node_neighborhood(graph: WorkflowGraph, node_id: str) -> Dict[str, List[Dict[str, Any]]]:
    """Incoming and outgoing edges of a node, with previews of the nodes on the other end."""
    node_by_id = {node.id: node for node in graph.nodes}

    def node_type(other_id: str) -> str:
        other = node_by_id.get(other_id)
        return other.type if other is not None and other.type else "unknown"

    def preview(other_id: str) -> Dict[str, Any]:
        other = node_by_id.get(other_id)
        return summarize_config(other.raw_config if other is not None else {})

    incoming = [
        {
            "sourceHandle": edge.source_handle or ROUTE_OUT,
            "sourceNodeId": edge.source,
            "sourceNodeType": node_type(edge.source),
            "sourceConfigPreview": preview(edge.source),
        }
        for edge in graph.edges
        if edge.target == node_id
    ]
    outgoing = [
        {
            "route": edge.source_handle or ROUTE_OUT,
            "targetNodeId": edge.target,
            "targetNodeType": node_type(edge.target),
            "targetConfigPreview": preview(edge.target),
        }
        for edge in graph.edges
        if edge.source == node_id
    ]
    return {"incoming": incoming, "outgoing": outgoing}
