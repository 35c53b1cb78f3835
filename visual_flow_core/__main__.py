"""
Command line entry point.

    python -m visual_flow_core validate FLOW.json
    python -m visual_flow_core compile FLOW.json [-o OUT]
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .compiler import compile_graph
from .config import FlowConfig
from .exceptions import FlowError
from .models import Graph, graph_from_dict
from .validator import ValidationResult, validate


def _load_graph(path: str) -> Graph:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    # Saved flows and web exports wrap the graph in {"graph": ...}
    if isinstance(data, dict) and 'graph' in data and 'nodes' not in data:
        data = data['graph']
    return graph_from_dict(data)


def _print_diagnostics(result: ValidationResult, stream):
    for diagnostic in result.diagnostics:
        where = ', '.join(diagnostic.node_ids or diagnostic.edge_ids)
        where = f" [{where}]" if where else ''
        print(f"{diagnostic.severity.value}: {diagnostic.code}{where}: {diagnostic.message}",
              file=stream)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='visual_flow_core',
        description='Validate and compile visual endpoint flows.')
    subparsers = parser.add_subparsers(dest='command', required=True)

    validate_cmd = subparsers.add_parser('validate', help='Report problems in a flow')
    validate_cmd.add_argument('flow', help='Path to a flow JSON file')

    compile_cmd = subparsers.add_parser('compile', help='Generate the endpoint handler')
    compile_cmd.add_argument('flow', help='Path to a flow JSON file')
    compile_cmd.add_argument('-o', '--output', help='Write the handler here instead of stdout')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = FlowConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    try:
        graph = _load_graph(args.flow)
    except (OSError, ValueError, FlowError) as e:
        print(f"error: cannot read {args.flow}: {e}", file=sys.stderr)
        return 2

    if args.command == 'validate':
        result = validate(graph)
        _print_diagnostics(result, sys.stdout)
        if result.is_valid:
            print(f"ok: {len(graph.nodes)} nodes, {len(result.warnings)} warnings")
            return 0
        return 1

    result = compile_graph(graph)
    if not result.success:
        _print_diagnostics(result.validation, sys.stderr)
        return 1

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(result.artifact.source)
        print(f"wrote {result.artifact.method} {result.artifact.path} handler to {args.output}")
    else:
        sys.stdout.write(result.artifact.source)
    return 0


if __name__ == '__main__':
    sys.exit(main())
