"""
Validation and compilation of node graphs.

Compiling turns the node and edge lists into lookup tables the runner walks:
nodes by id and, per source node, the single edge leaving each handle.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .errors import GraphValidationError
from .graph_model import (
    NODE_FIND_IMAGE,
    NODE_LOOP,
    NODE_START,
    ROUTE_DONE,
    ROUTE_FOUND,
    ROUTE_LOOP,
    ROUTE_NOT_FOUND,
    FlowEdge,
    FlowNode,
    WorkflowGraph,
)

# Handles each branching node type is expected to wire up
_EXPECTED_HANDLES = {
    NODE_FIND_IMAGE: (
        (ROUTE_FOUND, 'Find Image has no "FOUND" output; the workflow ends when the image is found.'),
        (ROUTE_NOT_FOUND, 'Find Image has no "NOT_FOUND" output; the workflow ends when the image is missing.'),
    ),
    NODE_LOOP: (
        (ROUTE_LOOP, 'Loop has no "LOOP" output; its body never runs.'),
        (ROUTE_DONE, 'Loop has no "DONE" output; the workflow ends when the loop finishes.'),
    ),
}


@dataclass
class ValidationIssue:
    level: str  # error | warning
    message: str
    node_id: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.message} (node {self.node_id})" if self.node_id else self.message


@dataclass
class CompiledGraph:
    graph: WorkflowGraph
    node_by_id: Dict[str, FlowNode]
    edges_by_source: Dict[str, Dict[str, FlowEdge]]
    start_node: FlowNode
    warnings: List[ValidationIssue] = field(default_factory=list)

    def edge_for(self, node_id: str, handle: str) -> Optional[FlowEdge]:
        return self.edges_by_source.get(node_id, {}).get(handle)


class GraphCompiler:
    def validate(self, graph: WorkflowGraph) -> Tuple[List[ValidationIssue], List[ValidationIssue]]:
        """Return ``(errors, warnings)`` for ``graph``."""
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        start_nodes = [node for node in graph.nodes if node.type == NODE_START]
        if not start_nodes:
            errors.append(ValidationIssue("error", "Workflow must have exactly one start node."))
        elif len(start_nodes) > 1:
            errors.append(ValidationIssue("error", "Workflow cannot have more than one start node."))

        node_ids = {node.id for node in graph.nodes}
        handle_usage: Dict[str, Set[str]] = {}
        for edge in graph.edges:
            used = handle_usage.setdefault(edge.source, set())
            if edge.source_handle in used:
                errors.append(ValidationIssue(
                    "error",
                    f'Handle "{edge.source_handle}" already has a connection; only one edge per output is allowed.',
                    edge.source,
                ))
            used.add(edge.source_handle)

            if edge.source not in node_ids:
                errors.append(ValidationIssue("error", f'Edge {edge.id or "?"} starts at unknown node "{edge.source}".'))
            if edge.target not in node_ids:
                errors.append(ValidationIssue(
                    "error", f'Edge {edge.id or "?"} points to unknown node "{edge.target}".', edge.source
                ))

        for node in graph.nodes:
            used = handle_usage.get(node.id, set())
            for handle, message in _EXPECTED_HANDLES.get(node.type, ()):
                if handle not in used:
                    warnings.append(ValidationIssue("warning", message, node.id))

        if len(start_nodes) == 1:
            reachable = _reachable_from(start_nodes[0].id, graph.edges)
            for node in graph.nodes:
                if node.id not in reachable:
                    warnings.append(ValidationIssue("warning", "Node is unreachable from the start node.", node.id))

        return errors, warnings

    def compile(self, graph: WorkflowGraph) -> CompiledGraph:
        errors, warnings = self.validate(graph)
        if errors:
            raise GraphValidationError(str(issue) for issue in errors)

        node_by_id = {node.id: node for node in graph.nodes}
        edges_by_source: Dict[str, Dict[str, FlowEdge]] = {}
        for edge in graph.edges:
            edges_by_source.setdefault(edge.source, {})[edge.source_handle] = edge

        start_node = next(node for node in graph.nodes if node.type == NODE_START)
        return CompiledGraph(
            graph=graph,
            node_by_id=node_by_id,
            edges_by_source=edges_by_source,
            start_node=start_node,
            warnings=warnings,
        )


def _reachable_from(start_id: str, edges: List[FlowEdge]) -> Set[str]:
    reachable = {start_id}
    queue = deque([start_id])
    while queue:
        current = queue.popleft()
        for edge in edges:
            if edge.source == current and edge.target not in reachable:
                reachable.add(edge.target)
                queue.append(edge.target)
    return reachable
