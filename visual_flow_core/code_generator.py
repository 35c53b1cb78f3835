"""
Code Generator for producing Flask endpoint handler source from scheduled flows.

Each node kind has one emission rule. A rule receives the node, its config and
the name of the variable it should bind, and returns the statements for that
step. Steps read the previous step's output from ``previous_result`` and the
generator rebinds that name after every value-producing step, so a flow is
lowered as a linear pipeline in scheduled order.
"""

import hashlib
import logging
import re
import textwrap
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from .exceptions import GenerationError
from .models import Node, NodeKind, ResponseFormat


RUNTIME_MODULE = 'visual_flow_core.handler_runtime'
PIPELINE_VAR = 'previous_result'
RESPONSE_VAR = 'response'
INDENT = '    '


@dataclass(frozen=True)
class Emission:
    """Statements emitted for one node plus the names they need imported."""
    lines: Tuple[str, ...] = ()
    imports: FrozenSet[Tuple[str, str]] = frozenset()
    produces_value: bool = True


@dataclass(frozen=True)
class Artifact:
    """Generated handler source and the import statements it uses."""
    source: str
    imports: FrozenSet[str]
    method: str
    path: str
    handler_name: str
    node_ids: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.source.encode('utf-8')).hexdigest()

    def to_dict(self) -> Dict[str, object]:
        return {
            'source': self.source,
            'imports': sorted(self.imports),
            'method': self.method,
            'path': self.path,
            'handlerName': self.handler_name,
            'nodeIds': list(self.node_ids),
            'contentHash': self.content_hash,
        }


def render_transform_function(name: str, code: str) -> List[str]:
    """Wrap user transform code as the body of ``def name(previous_result):``.

    The code is dedented and every non-blank line is re-indented one level,
    including continuation lines of triple-quoted strings. Such strings
    therefore gain leading indentation in the generated handler, and the
    formatter strips their trailing whitespace. Use ``textwrap.dedent`` or
    single-line literals where the exact text matters.
    """
    body = textwrap.dedent(code.expandtabs(4)).strip('\n')
    lines = [f"def {name}({PIPELINE_VAR}):"]
    for line in body.split('\n'):
        lines.append(INDENT + line if line.strip() else '')
    return lines


def _runtime(*names: str) -> FrozenSet[Tuple[str, str]]:
    return frozenset((RUNTIME_MODULE, name) for name in names)


# =============================================================================
# EMISSION RULES
# =============================================================================

def emit_trigger(node: Node, out_var: str) -> Emission:
    """Triggers contribute route metadata only."""
    return Emission(produces_value=False)


def emit_database(node: Node, out_var: str) -> Emission:
    config = node.config
    call = (
        f"{out_var} = get_database_client().fetch("
        f"{config.table!r}, filter={config.filter!r}, limit={config.limit!r}, "
        f"params={PIPELINE_VAR})"
    )
    return Emission(lines=(call,), imports=_runtime('get_database_client'))


def emit_transform(node: Node, out_var: str) -> Emission:
    func_name = f"transform_{out_var}"
    lines = render_transform_function(func_name, node.config.code)
    lines.append(f"{out_var} = {func_name}({PIPELINE_VAR})")
    return Emission(lines=tuple(lines))


def emit_validate(node: Node, out_var: str) -> Emission:
    schema = dict(node.config.schema)
    return Emission(
        lines=(f"{out_var} = check_schema({PIPELINE_VAR}, {schema!r})",),
        imports=_runtime('check_schema'),
    )


def emit_response(node: Node, out_var: str) -> Emission:
    config = node.config
    fmt = ResponseFormat(config.format.strip().lower())
    status_code = config.status_code if config.status_code is not None else 200
    serializer = 'xml_response' if fmt == ResponseFormat.XML else 'json_response'
    return Emission(
        lines=(f"{RESPONSE_VAR} = {serializer}({PIPELINE_VAR}, status_code={status_code})",),
        imports=_runtime(serializer),
        produces_value=False,
    )


EmissionRule = Callable[[Node, str], Emission]

EMISSION_RULES: Dict[NodeKind, EmissionRule] = {
    NodeKind.TRIGGER: emit_trigger,
    NodeKind.DATABASE: emit_database,
    NodeKind.TRANSFORM: emit_transform,
    NodeKind.VALIDATE: emit_validate,
    NodeKind.RESPONSE: emit_response,
}


class SourceFormatter:
    """Final whitespace pass over generated source."""

    def format_code(self, code: str) -> str:
        lines = [line.rstrip() for line in code.split('\n')]
        code = '\n'.join(lines)
        code = re.sub(r'\n{3,}(?=\S)', '\n\n\n', code)
        return code.strip('\n') + '\n'


class CodeGenerator:
    """Lowers an ordered list of flow nodes into endpoint handler source."""

    def __init__(self, rules: Optional[Dict[NodeKind, EmissionRule]] = None):
        self.logger = logging.getLogger(__name__)
        self.rules = dict(EMISSION_RULES if rules is None else rules)
        self.formatter = SourceFormatter()

    def generate(self, ordered_nodes: Sequence[Node]) -> Artifact:
        """
        Generate the handler for a scheduled flow.

        Args:
            ordered_nodes: Nodes in the order returned by the scheduler. The
                flow must already have passed validation.

        Returns:
            Artifact: the handler source and its import statements.

        Raises:
            GenerationError: If a node kind has no emission rule, or the
                output does not compile. Both indicate a generator defect.
        """
        trigger = self._find_trigger(ordered_nodes)
        method = trigger.config.method.strip().upper()
        path = trigger.config.path
        handler_name = self.handler_name(method, path)

        imports: Set[Tuple[str, str]] = {(RUNTIME_MODULE, 'failure_response'),
                                         (RUNTIME_MODULE, 'read_request_payload')}
        body: List[str] = [f"{PIPELINE_VAR} = read_request_payload(path_params)"]
        has_response = False

        for index, node in enumerate(ordered_nodes):
            rule = self.rules.get(node.kind)
            if rule is None:
                raise GenerationError(
                    f"No emission rule for node kind {node.kind.value!r}", node_id=node.id)

            out_var = f"step_{index}"
            emission = rule(node, out_var)
            imports.update(emission.imports)
            if not emission.lines:
                continue

            body.append(f"# [{_one_line(node.id)}] {node.kind.value}: {_one_line(node.label)}")
            body.extend(emission.lines)
            if emission.produces_value:
                body.append(f"{PIPELINE_VAR} = {out_var}")
            if node.kind == NodeKind.RESPONSE:
                has_response = True

        if not has_response:
            raise GenerationError("Flow has no Response node to return")
        body.append(f"return {RESPONSE_VAR}")

        import_lines = self._render_imports(imports)
        source = self._render_module(method, path, handler_name, import_lines, body)
        source = self.formatter.format_code(source)
        self.validate_generated_code(source)

        artifact = Artifact(
            source=source,
            imports=frozenset(import_lines),
            method=method,
            path=path,
            handler_name=handler_name,
            node_ids=tuple(n.id for n in ordered_nodes),
        )
        self.logger.debug(
            f"Generated {handler_name} for {method} {path}: "
            f"{len(ordered_nodes)} nodes, {len(source)} bytes"
        )
        return artifact

    @staticmethod
    def handler_name(method: str, path: str) -> str:
        """Derive a Python identifier for the handler from its route."""
        slug = re.sub(r'[^0-9a-zA-Z]+', '_', path).strip('_').lower()
        return f"handle_{method.lower()}_{slug}" if slug else f"handle_{method.lower()}_root"

    def validate_generated_code(self, code: str):
        """Compile the generated source; failure means the generator is broken."""
        try:
            compile(code, '<generated handler>', 'exec')
        except SyntaxError as e:
            raise GenerationError(
                f"Generated code does not compile (line {e.lineno}): {e.msg}",
                details={'line': e.lineno, 'text': e.text})

    def _find_trigger(self, ordered_nodes: Sequence[Node]) -> Node:
        triggers = [n for n in ordered_nodes if n.kind == NodeKind.TRIGGER]
        if len(triggers) != 1:
            raise GenerationError(
                f"Expected exactly one Trigger node, got {len(triggers)}",
                details={'node_ids': [n.id for n in triggers]})
        return triggers[0]

    def _render_imports(self, imports: Set[Tuple[str, str]]) -> List[str]:
        """Group required names by module; one sorted ``from`` line per module."""
        by_module: Dict[str, Set[str]] = {}
        for module, name in imports:
            by_module.setdefault(module, set()).add(name)
        return [
            f"from {module} import {', '.join(sorted(names))}"
            for module, names in sorted(by_module.items())
        ]

    def _render_module(self, method: str, path: str, handler_name: str,
                       import_lines: List[str], body: List[str]) -> str:
        lines = [
            '"""',
            f"Generated endpoint handler for {method} {path}.",
            '',
            "Regenerate from the flow instead of editing this file.",
            '"""',
            '',
        ]
        lines.extend(import_lines)
        lines.extend([
            '',
            f"ENDPOINT_METHOD = {method!r}",
            f"ENDPOINT_PATH = {path!r}",
            '',
            '',
            f"def {handler_name}(**path_params):",
            f"{INDENT}try:",
        ])
        lines.extend(_indent(line, 2) for line in body)
        lines.extend([
            f"{INDENT}except Exception as exc:",
            f"{INDENT * 2}return failure_response(exc)",
            '',
            '',
            "def register(app):",
            f"{INDENT}app.add_url_rule(ENDPOINT_PATH, endpoint={('flow_' + handler_name)!r},",
            f"{INDENT}                 view_func={handler_name}, methods=[ENDPOINT_METHOD])",
            f"{INDENT}return {handler_name}",
        ])
        return '\n'.join(lines)


def _indent(line: str, depth: int) -> str:
    if not line:
        return line
    return INDENT * depth + line


def _one_line(text: str) -> str:
    """Collapse text to a single printable line that is safe inside a comment."""
    printable = ''.join(ch if ch.isprintable() else ' ' for ch in str(text))
    return ' '.join(printable.split())


_default_generator = CodeGenerator()


def generate(ordered_nodes: Sequence[Node]) -> Artifact:
    """Generate handler source with the default rule table."""
    return _default_generator.generate(ordered_nodes)
