"""
Structural validator for flow graphs.

Checks a graph for well-formedness before anything is scheduled or generated:
entry and exit nodes, dangling edges, cycles, reachability from the trigger,
and each node's required configuration. Every check runs on every call and
all diagnostics are collected, so the editor can show every problem at once.
"""

import ast
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple, Callable

from .models import (
    Graph, Node, NodeKind, HttpMethod, ResponseFormat, SCHEMA_TYPES, CONFIG_TYPES,
)
from .code_generator import render_transform_function


logger = logging.getLogger(__name__)


class Severity(Enum):
    """How serious a diagnostic is. Only errors block generation."""
    ERROR = "error"
    WARNING = "warning"


class DiagnosticCategory(Enum):
    """Which part of the model a diagnostic is about."""
    STRUCTURAL = "structural"
    CONFIG = "config"


# Structural diagnostic codes
MISSING_ENTRY = "missing_entry"
DUPLICATE_ENTRY = "duplicate_entry"
MISSING_EXIT = "missing_exit"
DANGLING_EDGE = "dangling_edge"
CYCLE = "cycle"
UNREACHABLE_NODE = "unreachable_node"
RESPONSE_HAS_SUCCESSORS = "response_has_successors"

# Config diagnostic code used when a node carries another kind's config
CONFIG_KIND_MISMATCH = "config"

REQUIRED_CONFIG_FIELDS: Dict[NodeKind, Tuple[str, ...]] = {
    NodeKind.TRIGGER: ('method', 'path'),
    NodeKind.DATABASE: ('table',),
    NodeKind.TRANSFORM: ('code',),
    NodeKind.VALIDATE: ('schema',),
    NodeKind.RESPONSE: ('format',),
}


@dataclass(frozen=True)
class Diagnostic:
    """A single problem found in a graph."""
    severity: Severity
    code: str
    message: str
    node_ids: Tuple[str, ...] = ()
    edge_ids: Tuple[str, ...] = ()
    category: DiagnosticCategory = DiagnosticCategory.STRUCTURAL

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            'severity': self.severity.value,
            'code': self.code,
            'message': self.message,
            'category': self.category.value,
            'nodeIds': list(self.node_ids),
            'edgeIds': list(self.edge_ids),
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a graph.

    A result with no error diagnostics is the Ok case and carries the graph
    on to scheduling; warnings may accompany it.
    """
    graph: Graph
    diagnostics: Tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return not any(d.is_error for d in self.diagnostics)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.is_valid,
            'diagnostics': [d.to_dict() for d in self.diagnostics],
        }


def _structural_error(code: str, message: str, node_ids=(), edge_ids=()) -> Diagnostic:
    return Diagnostic(Severity.ERROR, code, message, tuple(node_ids), tuple(edge_ids))


def _config_error(node: Node, code: str, message: str) -> Diagnostic:
    return Diagnostic(Severity.ERROR, code, message, (node.id,), (), DiagnosticCategory.CONFIG)


def _config_warning(node: Node, code: str, message: str) -> Diagnostic:
    return Diagnostic(Severity.WARNING, code, message, (node.id,), (), DiagnosticCategory.CONFIG)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list, tuple)):
        return len(value) == 0
    return False


class StructuralValidator:
    """Validates flow graphs against the structural and config invariants."""

    _WHITE, _GRAY, _BLACK = 0, 1, 2

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._value_checks: Dict[NodeKind, Callable[[Node], List[Diagnostic]]] = {
            NodeKind.TRIGGER: self._check_trigger_values,
            NodeKind.DATABASE: self._check_database_values,
            NodeKind.TRANSFORM: self._check_transform_values,
            NodeKind.VALIDATE: self._check_validate_values,
            NodeKind.RESPONSE: self._check_response_values,
        }

    def validate(self, graph: Graph) -> ValidationResult:
        """Run every check and return all diagnostics found."""
        adjacency = graph.adjacency()
        triggers = graph.nodes_of_kind(NodeKind.TRIGGER)

        diagnostics: List[Diagnostic] = []
        diagnostics.extend(self._check_entry_exit(graph, triggers))
        diagnostics.extend(self._check_dangling_edges(graph))
        diagnostics.extend(self._check_cycles(adjacency, triggers))
        diagnostics.extend(self._check_reachability(graph, adjacency, triggers))
        diagnostics.extend(self._check_response_successors(graph))
        for node in graph.nodes:
            diagnostics.extend(self._check_node_config(node))

        result = ValidationResult(graph=graph, diagnostics=tuple(diagnostics))
        self.logger.debug(
            f"Validated graph ({len(graph.nodes)} nodes, {len(graph.edges)} edges): "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return result

    # ------------------------------------------------------------------
    # Structural checks
    # ------------------------------------------------------------------

    def _check_entry_exit(self, graph: Graph, triggers: List[Node]) -> List[Diagnostic]:
        diagnostics = []
        if not triggers:
            diagnostics.append(_structural_error(
                MISSING_ENTRY, "Flow has no Trigger node (missing entry node)"))
        elif len(triggers) > 1:
            diagnostics.append(_structural_error(
                DUPLICATE_ENTRY,
                f"Flow has {len(triggers)} Trigger nodes; exactly one is allowed",
                node_ids=[n.id for n in triggers]))

        if not graph.nodes_of_kind(NodeKind.RESPONSE):
            diagnostics.append(_structural_error(
                MISSING_EXIT, "Flow has no Response node (missing exit node)"))
        return diagnostics

    def _check_dangling_edges(self, graph: Graph) -> List[Diagnostic]:
        node_ids = {node.id for node in graph.nodes}
        diagnostics = []
        for edge in graph.edges:
            missing = [nid for nid in (edge.source, edge.target) if nid not in node_ids]
            if missing:
                diagnostics.append(_structural_error(
                    DANGLING_EDGE,
                    f"Edge {edge.id} references missing node(s): {', '.join(missing)}",
                    node_ids=missing, edge_ids=[edge.id]))
        return diagnostics

    def _check_cycles(self, adjacency: Dict[str, List[str]], triggers: List[Node]) -> List[Diagnostic]:
        """Three-color DFS from each trigger; a back edge to a gray node is a cycle."""
        color = {node_id: self._WHITE for node_id in adjacency}
        diagnostics = []
        reported = set()

        for trigger in triggers:
            if color[trigger.id] != self._WHITE:
                continue
            color[trigger.id] = self._GRAY
            path = [trigger.id]
            stack = [iter(sorted(adjacency[trigger.id]))]

            while stack:
                child = next(stack[-1], None)
                if child is None:
                    stack.pop()
                    color[path.pop()] = self._BLACK
                    continue

                if color[child] == self._WHITE:
                    color[child] = self._GRAY
                    path.append(child)
                    stack.append(iter(sorted(adjacency[child])))
                elif color[child] == self._GRAY:
                    cycle = path[path.index(child):]
                    key = frozenset(cycle)
                    if key in reported:
                        continue
                    reported.add(key)
                    loop = " -> ".join(cycle + [child])
                    diagnostics.append(_structural_error(
                        CYCLE, f"Flow contains a cycle: {loop}", node_ids=cycle))

        return diagnostics

    def _check_reachability(self, graph: Graph, adjacency: Dict[str, List[str]],
                            triggers: List[Node]) -> List[Diagnostic]:
        if not triggers:
            return []

        visited = {t.id for t in triggers}
        queue = deque(visited)
        while queue:
            current = queue.popleft()
            for successor in adjacency[current]:
                if successor not in visited:
                    visited.add(successor)
                    queue.append(successor)

        return [
            _structural_error(
                UNREACHABLE_NODE,
                f"Node {node.id} ({node.label}) is not reachable from the Trigger node",
                node_ids=[node.id])
            for node in graph.nodes
            if node.id not in visited
        ]

    def _check_response_successors(self, graph: Graph) -> List[Diagnostic]:
        diagnostics = []
        for node in graph.nodes_of_kind(NodeKind.RESPONSE):
            outgoing = graph.outgoing_edges(node.id)
            if outgoing:
                diagnostics.append(Diagnostic(
                    Severity.WARNING, RESPONSE_HAS_SUCCESSORS,
                    f"Response node {node.id} has outgoing edges; they are ignored",
                    (node.id,), tuple(e.id for e in outgoing)))
        return diagnostics

    # ------------------------------------------------------------------
    # Config checks
    # ------------------------------------------------------------------

    def _check_node_config(self, node: Node) -> List[Diagnostic]:
        expected = CONFIG_TYPES[node.kind]
        if not isinstance(node.config, expected):
            return [_config_error(
                node, CONFIG_KIND_MISMATCH,
                f"Node {node.id} is a {node.kind.value} node but carries "
                f"{type(node.config).__name__}")]

        diagnostics = []
        for name in REQUIRED_CONFIG_FIELDS[node.kind]:
            if _is_missing(getattr(node.config, name)):
                diagnostics.append(_config_error(
                    node, name,
                    f"{node.kind.value.capitalize()} node {node.id} is missing required field '{name}'"))

        diagnostics.extend(self._value_checks[node.kind](node))
        return diagnostics

    def _check_trigger_values(self, node: Node) -> List[Diagnostic]:
        config = node.config
        diagnostics = []
        allowed = [m.value for m in HttpMethod]
        if not _is_missing(config.method):
            if not isinstance(config.method, str) or config.method.strip().upper() not in allowed:
                diagnostics.append(_config_error(
                    node, 'method',
                    f"Trigger method {config.method!r} is not one of {', '.join(allowed)}"))
        if not _is_missing(config.path):
            if not isinstance(config.path, str) or not config.path.startswith('/'):
                diagnostics.append(_config_error(
                    node, 'path', f"Trigger path {config.path!r} must start with '/'"))
        return diagnostics

    def _check_database_values(self, node: Node) -> List[Diagnostic]:
        config = node.config
        diagnostics = []
        if not _is_missing(config.table) and not isinstance(config.table, str):
            diagnostics.append(_config_error(node, 'table', "Database table must be a string"))
        if config.filter is not None and not isinstance(config.filter, str):
            diagnostics.append(_config_error(node, 'filter', "Database filter must be a string"))
        if config.limit is not None:
            if isinstance(config.limit, bool) or not isinstance(config.limit, int) or config.limit <= 0:
                diagnostics.append(_config_error(
                    node, 'limit', f"Database limit {config.limit!r} must be a positive integer"))
        return diagnostics

    def _check_transform_values(self, node: Node) -> List[Diagnostic]:
        code = node.config.code
        if _is_missing(code):
            return []
        if not isinstance(code, str):
            return [_config_error(node, 'code', "Transform code must be a string")]

        # compile() also runs the symbol table checks ast.parse skips
        # ('break' outside loop, parameter declared global, import * in a function)
        source = "\n".join(render_transform_function("transform", code))
        try:
            compile(source, f"<transform {node.id}>", 'exec')
        except (SyntaxError, ValueError) as e:
            lineno = getattr(e, 'lineno', None)
            reason = getattr(e, 'msg', None) or str(e)
            return [_config_error(
                node, 'code', f"Transform code is not a valid function body (line {lineno}): {reason}")]

        tree = ast.parse(source)
        if not any(isinstance(n, ast.Return) for n in ast.walk(tree)):
            return [_config_warning(
                node, 'code', f"Transform code in node {node.id} has no return statement; "
                              "the next step will receive None")]
        return []

    def _check_validate_values(self, node: Node) -> List[Diagnostic]:
        schema = node.config.schema
        if _is_missing(schema):
            return []
        if not isinstance(schema, dict):
            return [_config_error(node, 'schema', "Validate schema must be a mapping of field to type")]

        diagnostics = []
        for field_name, descriptor in schema.items():
            if not isinstance(field_name, str) or not field_name.strip():
                diagnostics.append(_config_error(
                    node, 'schema', f"Schema field name {field_name!r} must be a non-empty string"))
                continue
            base = descriptor[:-1] if isinstance(descriptor, str) and descriptor.endswith('?') else descriptor
            if base not in SCHEMA_TYPES:
                diagnostics.append(_config_error(
                    node, 'schema',
                    f"Schema field '{field_name}' has unknown type {descriptor!r}; "
                    f"expected one of {', '.join(SCHEMA_TYPES)}"))
        return diagnostics

    def _check_response_values(self, node: Node) -> List[Diagnostic]:
        config = node.config
        diagnostics = []
        allowed = [f.value for f in ResponseFormat]
        if not _is_missing(config.format):
            if not isinstance(config.format, str) or config.format.strip().lower() not in allowed:
                diagnostics.append(_config_error(
                    node, 'format',
                    f"Response format {config.format!r} is not one of {', '.join(allowed)}"))
        status = config.status_code
        if status is not None:
            if isinstance(status, bool) or not isinstance(status, int) or not 100 <= status <= 599:
                diagnostics.append(_config_error(
                    node, 'status_code', f"Response status code {status!r} must be an integer in 100-599"))
        return diagnostics


_default_validator = StructuralValidator()


def validate(graph: Graph) -> ValidationResult:
    """Validate a graph with the default validator."""
    return _default_validator.validate(graph)
