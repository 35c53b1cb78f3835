"""
Runtime support for generated endpoint handlers.

Every handler the code generator emits imports its helpers from this module:
request payload access, schema checks, response serialization, the error
boundary's failure response, and the database client the handler queries.
The concrete database driver is supplied by the hosting application through
``set_database_client``.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional
from xml.etree import ElementTree

from flask import Response, jsonify, request
from werkzeug.exceptions import HTTPException


logger = logging.getLogger(__name__)


class SchemaMismatch(Exception):
    """Raised by check_schema when a payload does not match a Validate node."""

    def __init__(self, message: str, errors: List[Dict[str, str]]):
        super().__init__(message)
        self.message = message
        self.errors = errors


# =============================================================================
# DATABASE CLIENT
# =============================================================================

class DatabaseClient(ABC):
    """Interface generated Database steps call into."""

    @abstractmethod
    def fetch(self, table: str, filter: Optional[str] = None, limit: Optional[int] = None,
              params: Any = None) -> List[Dict[str, Any]]:
        """Return the rows of ``table`` matching ``filter``."""
        pass


class InMemoryDatabaseClient(DatabaseClient):
    """Dict-backed client for development servers and tests.

    Filters are conjunctions of equality clauses such as
    ``"status = 'active' AND owner = :user_id"``; ``:name`` placeholders are
    looked up in ``params`` when it is a mapping.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: list(rows) for name, rows in (tables or {}).items()
        }
        self.calls: List[Dict[str, Any]] = []

    def fetch(self, table, filter=None, limit=None, params=None):
        self.calls.append({'table': table, 'filter': filter, 'limit': limit, 'params': params})
        if table not in self.tables:
            raise LookupError(f"Unknown table: {table}")

        rows = self.tables[table]
        if filter:
            predicate = self._compile_filter(filter, params)
            rows = [row for row in rows if predicate(row)]
        if limit is not None:
            rows = rows[:limit]
        return [dict(row) for row in rows]

    def _compile_filter(self, expression: str, params: Any) -> Callable[[Dict[str, Any]], bool]:
        clauses = []
        for clause in _split_and(expression):
            if '!=' in clause:
                column, raw = clause.split('!=', 1)
                negate = True
            elif '=' in clause:
                column, raw = clause.split('=', 1)
                negate = False
            else:
                raise ValueError(f"Unsupported filter clause: {clause!r}")
            clauses.append((column.strip(), self._resolve_value(raw.strip(), params), negate))

        def predicate(row: Dict[str, Any]) -> bool:
            for column, value, negate in clauses:
                if (row.get(column) == value) == negate:
                    return False
            return True

        return predicate

    @staticmethod
    def _resolve_value(raw: str, params: Any) -> Any:
        if raw.startswith(':'):
            if not isinstance(params, Mapping):
                raise ValueError(f"Filter placeholder {raw} needs a mapping of parameters")
            return params.get(raw[1:])
        if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
            return raw[1:-1]
        lowered = raw.lower()
        if lowered in ('true', 'false'):
            return lowered == 'true'
        if lowered == 'null':
            return None
        try:
            return int(raw)
        except ValueError:
            pass
        try:
            return float(raw)
        except ValueError:
            return raw


def _split_and(expression: str) -> List[str]:
    parts = []
    current = []
    for token in expression.split():
        if token.upper() == 'AND':
            parts.append(' '.join(current))
            current = []
        else:
            current.append(token)
    parts.append(' '.join(current))
    return [p for p in parts if p]


_client: Optional[DatabaseClient] = None
_client_lock = threading.Lock()


def set_database_client(client: Optional[DatabaseClient]):
    """Install the database client generated handlers will use."""
    global _client
    with _client_lock:
        _client = client


def get_database_client() -> DatabaseClient:
    """Return the installed database client."""
    with _client_lock:
        client = _client
    if client is None:
        raise RuntimeError("No database client configured; call set_database_client() first")
    return client


# =============================================================================
# REQUEST / SCHEMA
# =============================================================================

def read_request_payload(path_params: Optional[Mapping[str, Any]] = None) -> Any:
    """Seed value of a handler's pipeline.

    JSON body for POST/PUT, query arguments for GET/DELETE. Route parameters
    are merged in when the payload is an object.
    """
    if request.method in ('POST', 'PUT'):
        payload = request.get_json(silent=True)
        if payload is None:
            payload = {}
    else:
        payload = request.args.to_dict()

    if path_params and isinstance(payload, dict):
        payload = dict(payload)
        payload.update(path_params)
    return payload


_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    'string': lambda v: isinstance(v, str),
    'integer': lambda v: isinstance(v, int) and not isinstance(v, bool),
    'number': lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    'boolean': lambda v: isinstance(v, bool),
    'object': lambda v: isinstance(v, dict),
    'array': lambda v: isinstance(v, list),
}


def check_schema(payload: Any, schema: Mapping[str, str]) -> Any:
    """Assert ``payload`` matches ``schema`` and return it unchanged.

    Raises:
        SchemaMismatch: listing every offending field.
    """
    if not isinstance(payload, dict):
        raise SchemaMismatch(
            "Payload must be an object",
            [{'field': '', 'error': f"expected object, got {type(payload).__name__}"}])

    errors = []
    for field_name, descriptor in schema.items():
        optional = descriptor.endswith('?')
        base = descriptor.rstrip('?')
        value = payload.get(field_name)
        if value is None:
            if not optional:
                errors.append({'field': field_name, 'error': 'missing required field'})
            continue
        if not _TYPE_CHECKS[base](value):
            errors.append({
                'field': field_name,
                'error': f"expected {base}, got {type(value).__name__}",
            })

    if errors:
        raise SchemaMismatch("Payload does not match schema", errors)
    return payload


# =============================================================================
# RESPONSES
# =============================================================================

def json_response(payload: Any, status_code: int = 200) -> Response:
    """Serialize ``payload`` as JSON."""
    response = jsonify(payload)
    response.status_code = status_code
    return response


def xml_response(payload: Any, status_code: int = 200, root_tag: str = 'response') -> Response:
    """Serialize ``payload`` as an XML document."""
    root = ElementTree.Element(root_tag)
    _append_xml(root, payload)
    body = '<?xml version="1.0" encoding="UTF-8"?>' + ElementTree.tostring(root, encoding='unicode')
    return Response(body, status=status_code, mimetype='application/xml')


def _append_xml(element: ElementTree.Element, value: Any):
    if isinstance(value, dict):
        for key, child_value in value.items():
            tag = str(key)
            if _is_xml_name(tag):
                child = ElementTree.SubElement(element, tag)
            else:
                child = ElementTree.SubElement(element, 'field', {'name': tag})
            _append_xml(child, child_value)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _append_xml(ElementTree.SubElement(element, 'item'), item)
    elif value is None:
        return
    elif isinstance(value, bool):
        element.text = 'true' if value else 'false'
    else:
        element.text = str(value)


def _is_xml_name(tag: str) -> bool:
    if not tag or not (tag[0].isalpha() or tag[0] == '_'):
        return False
    if tag.lower().startswith('xml'):
        return False
    return all(ch.isalnum() or ch in '-_.' for ch in tag)


def failure_response(exc: BaseException) -> Response:
    """Convert an exception raised inside a handler into a structured failure."""
    if isinstance(exc, SchemaMismatch):
        status_code = 400
        body = {'success': False, 'error': exc.message, 'type': 'SchemaMismatch', 'details': exc.errors}
    elif isinstance(exc, HTTPException):
        status_code = exc.code or 500
        body = {'success': False, 'error': exc.description, 'type': type(exc).__name__}
    else:
        logger.error(f"Endpoint handler failed: {exc}", exc_info=exc)
        status_code = 500
        body = {'success': False, 'error': str(exc) or type(exc).__name__, 'type': type(exc).__name__}

    response = jsonify(body)
    response.status_code = status_code
    return response
