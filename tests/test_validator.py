"""
Unit tests for the structural validator.
"""

import pytest
from hypothesis import given, strategies as st

from visual_flow_core.compiler import FlowCompiler
from visual_flow_core.models import (
    Graph, Node, Edge, NodeKind,
    TriggerConfig, DatabaseConfig, TransformConfig, ValidateConfig, ResponseConfig,
)
from visual_flow_core.validator import (
    CYCLE, DANGLING_EDGE, DUPLICATE_ENTRY, MISSING_ENTRY, MISSING_EXIT,
    RESPONSE_HAS_SUCCESSORS, UNREACHABLE_NODE,
    DiagnosticCategory, Severity, StructuralValidator, validate,
)


def _trigger(node_id="trigger", method="GET", path="/items"):
    return Node(node_id, NodeKind.TRIGGER, config=TriggerConfig(method=method, path=path))


def _response(node_id="out", fmt="json", status_code=None):
    return Node(node_id, NodeKind.RESPONSE, config=ResponseConfig(format=fmt, status_code=status_code))


def _transform(node_id, code="return previous_result"):
    return Node(node_id, NodeKind.TRANSFORM, config=TransformConfig(code=code))


def _codes(result):
    return [d.code for d in result.diagnostics]


class TestStructure:
    """Test cases for structural checks."""

    def test_valid_pipeline(self, users_graph):
        result = validate(users_graph)
        assert result.is_valid
        assert result.diagnostics == ()

    def test_missing_entry(self):
        """Database -> Transform without a Trigger reports the missing entry."""
        graph = Graph(
            nodes=(Node("db", NodeKind.DATABASE, config=DatabaseConfig(table="users")),
                   _transform("tx")),
            edges=(Edge("db", "tx"),),
        )
        result = validate(graph)
        assert not result.is_valid
        assert MISSING_ENTRY in _codes(result)
        # Reachability is meaningless without an entry point
        assert UNREACHABLE_NODE not in _codes(result)

    def test_duplicate_entry(self):
        graph = Graph(
            nodes=(_trigger("t1"), _trigger("t2"), _response()),
            edges=(Edge("t1", "out"), Edge("t2", "out")),
        )
        result = validate(graph)
        [diagnostic] = [d for d in result.errors if d.code == DUPLICATE_ENTRY]
        assert diagnostic.node_ids == ("t1", "t2")

    def test_missing_exit(self):
        graph = Graph(nodes=(_trigger(), _transform("tx")), edges=(Edge("trigger", "tx"),))
        assert MISSING_EXIT in _codes(validate(graph))

    def test_cycle_references_nodes_on_it(self):
        """Trigger -> A -> B -> A reports a cycle naming exactly A and B."""
        graph = Graph(
            nodes=(_trigger(), _transform("A"), _transform("B"), _response()),
            edges=(Edge("trigger", "A"), Edge("A", "B"), Edge("B", "A"), Edge("B", "out")),
        )
        result = validate(graph)
        cycles = [d for d in result.errors if d.code == CYCLE]
        assert len(cycles) == 1
        assert set(cycles[0].node_ids) == {"A", "B"}

    def test_self_loop_is_a_cycle(self):
        graph = Graph(
            nodes=(_trigger(), _transform("A"), _response()),
            edges=(Edge("trigger", "A"), Edge("A", "A"), Edge("A", "out")),
        )
        cycles = [d for d in validate(graph).errors if d.code == CYCLE]
        assert [d.node_ids for d in cycles] == [("A",)]

    def test_unreachable_node(self):
        graph = Graph(
            nodes=(_trigger(), _response(), _transform("orphan")),
            edges=(Edge("trigger", "out"),),
        )
        result = validate(graph)
        [diagnostic] = [d for d in result.errors if d.code == UNREACHABLE_NODE]
        assert diagnostic.node_ids == ("orphan",)

    def test_dangling_edge(self):
        graph = Graph(
            nodes=(_trigger(), _response()),
            edges=(Edge("trigger", "out"), Edge("trigger", "ghost")),
        )
        [diagnostic] = [d for d in validate(graph).errors if d.code == DANGLING_EDGE]
        assert diagnostic.node_ids == ("ghost",)
        assert diagnostic.edge_ids == ("trigger->ghost",)

    def test_response_successors_warn_only(self):
        graph = Graph(
            nodes=(_trigger(), _response(), _transform("after")),
            edges=(Edge("trigger", "out"), Edge("out", "after")),
        )
        result = validate(graph)
        assert result.is_valid
        assert [d.code for d in result.warnings] == [RESPONSE_HAS_SUCCESSORS]

    def test_all_errors_accumulated(self):
        graph = Graph(nodes=(_transform("tx", code=None),))
        codes = _codes(validate(graph))
        assert MISSING_ENTRY in codes
        assert MISSING_EXIT in codes
        assert "code" in codes


class TestConfig:
    """Test cases for per-kind config checks."""

    def test_validate_without_schema(self):
        """Trigger -> Validate(no schema) -> Response reports 'schema' on the Validate node."""
        graph = Graph(
            nodes=(_trigger(), Node("check", NodeKind.VALIDATE), _response()),
            edges=(Edge("trigger", "check"), Edge("check", "out")),
        )
        result = validate(graph)
        [diagnostic] = result.errors
        assert diagnostic.code == "schema"
        assert diagnostic.category == DiagnosticCategory.CONFIG
        assert diagnostic.node_ids == ("check",)

    def test_unknown_method(self):
        graph = Graph(nodes=(_trigger(method="PATCH"), _response()), edges=(Edge("trigger", "out"),))
        assert _codes(validate(graph)) == ["method"]

    def test_method_case_insensitive(self):
        graph = Graph(nodes=(_trigger(method="post"), _response()), edges=(Edge("trigger", "out"),))
        assert validate(graph).is_valid

    def test_path_must_be_absolute(self):
        graph = Graph(nodes=(_trigger(path="items"), _response()), edges=(Edge("trigger", "out"),))
        assert _codes(validate(graph)) == ["path"]

    def test_limit_must_be_positive(self):
        graph = Graph(
            nodes=(_trigger(), Node("db", NodeKind.DATABASE, config=DatabaseConfig(table="t", limit=0)),
                   _response()),
            edges=(Edge("trigger", "db"), Edge("db", "out")),
        )
        assert _codes(validate(graph)) == ["limit"]

    def test_unknown_schema_type(self):
        graph = Graph(
            nodes=(_trigger(), Node("v", NodeKind.VALIDATE, config=ValidateConfig(schema={"age": "int"})),
                   _response()),
            edges=(Edge("trigger", "v"), Edge("v", "out")),
        )
        assert _codes(validate(graph)) == ["schema"]

    def test_optional_schema_field_accepted(self):
        graph = Graph(
            nodes=(_trigger(),
                   Node("v", NodeKind.VALIDATE, config=ValidateConfig(schema={"nickname": "string?"})),
                   _response()),
            edges=(Edge("trigger", "v"), Edge("v", "out")),
        )
        assert validate(graph).is_valid

    def test_transform_syntax_error(self):
        graph = Graph(
            nodes=(_trigger(), _transform("tx", code="return ("), _response()),
            edges=(Edge("trigger", "tx"), Edge("tx", "out")),
        )
        [diagnostic] = validate(graph).errors
        assert diagnostic.code == "code"
        assert diagnostic.node_ids == ("tx",)

    @pytest.mark.parametrize("code", [
        "break",
        "global previous_result\nreturn previous_result",
        "from os.path import *\nreturn previous_result",
        "return await previous_result",
    ])
    def test_transform_rejected_by_compiler(self, code):
        """Code that parses but does not compile is a config error, and never reaches generation."""
        graph = Graph(
            nodes=(_trigger(), _transform("tx", code=code), _response()),
            edges=(Edge("trigger", "tx"), Edge("tx", "out")),
        )
        result = validate(graph)
        [diagnostic] = result.errors
        assert diagnostic.code == "code"
        assert diagnostic.category == DiagnosticCategory.CONFIG
        assert diagnostic.node_ids == ("tx",)

        compiled = FlowCompiler().compile(graph)
        assert compiled.success is False
        assert compiled.artifact is None

    def test_transform_without_return_warns(self):
        graph = Graph(
            nodes=(_trigger(), _transform("tx", code="x = 1"), _response()),
            edges=(Edge("trigger", "tx"), Edge("tx", "out")),
        )
        result = validate(graph)
        assert result.is_valid
        assert [d.severity for d in result.diagnostics] == [Severity.WARNING]

    def test_response_format_and_status(self):
        graph = Graph(
            nodes=(_trigger(), _response(fmt="yaml", status_code=700)),
            edges=(Edge("trigger", "out"),),
        )
        assert sorted(_codes(validate(graph))) == ["format", "status_code"]

    def test_to_dict_uses_camel_case_ids(self):
        graph = Graph(nodes=(_trigger(), Node("check", NodeKind.VALIDATE), _response()),
                      edges=(Edge("trigger", "check"), Edge("check", "out")))
        data = validate(graph).to_dict()
        assert data['valid'] is False
        assert data['diagnostics'][0]['nodeIds'] == ["check"]
        assert data['diagnostics'][0]['category'] == "config"


# Property-based tests
@given(st.integers(min_value=0, max_value=12))
def test_linear_pipeline_always_valid(length):
    """Property test: Trigger -> n transforms -> Response is always valid."""
    middle = [_transform(f"step{i:02d}") for i in range(length)]
    ids = ["trigger"] + [n.id for n in middle] + ["out"]
    graph = Graph(
        nodes=tuple([_trigger()] + middle + [_response()]),
        edges=tuple(Edge(a, b) for a, b in zip(ids, ids[1:])),
    )
    assert StructuralValidator().validate(graph).is_valid


@given(st.integers(min_value=1, max_value=8), st.data())
def test_back_edge_always_reported(length, data):
    """Property test: a back edge inside a chain yields a cycle over the chain segment."""
    middle = [_transform(f"step{i:02d}") for i in range(length)]
    ids = ["trigger"] + [n.id for n in middle] + ["out"]
    edges = [Edge(a, b) for a, b in zip(ids, ids[1:])]
    start = data.draw(st.integers(min_value=1, max_value=length))
    end = data.draw(st.integers(min_value=start, max_value=length))
    edges.append(Edge(ids[end], ids[start]))

    graph = Graph(nodes=tuple([_trigger()] + middle + [_response()]), edges=tuple(edges))
    cycles = [d for d in validate(graph).errors if d.code == CYCLE]
    assert len(cycles) == 1
    assert set(cycles[0].node_ids) == set(ids[start:end + 1])
