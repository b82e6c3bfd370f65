"""Filter matching, projection, sort and update evaluation for stored documents.

Filters use the familiar document-query shape: ``{"field": value}`` for
equality, ``{"field": {"$gte": 1}}`` for operators, dotted paths for embedded
fields and ``$and``/``$or`` at the top level. Values compare as a whole;
arrays are not matched element by element. Scalar conditions are also
translated to SQL over ``json_extract`` so SQLite can narrow the scan and use
expression indexes; the Python matcher stays authoritative.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from docstore.encoding import encode_key, normalize_value
from docstore.exceptions import InvalidQueryError

SortSpec = Union[Dict[str, int], List[Tuple[str, int]], Tuple[Tuple[str, int], ...]]

COMPARISON_OPERATORS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<=", "$eq": "="}
SUPPORTED_OPERATORS = set(COMPARISON_OPERATORS) | {"$ne", "$in", "$nin", "$exists"}

_MISSING = object()


def lookup(document: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path, returning _MISSING when any segment is absent."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def is_operator_document(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(k.startswith("$") for k in condition)


def _values_equal(value: Any, expected: Any) -> bool:
    if isinstance(value, bool) != isinstance(expected, bool):
        return False
    return value == expected


def _equals(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is _MISSING or value is None
    if value is _MISSING:
        return False
    return _values_equal(value, expected)


def _compare(value: Any, operator: str, operand: Any) -> bool:
    if value is _MISSING:
        return False
    if isinstance(value, bool) != isinstance(operand, bool):
        return False
    try:
        if operator == "$gt":
            return value > operand
        if operator == "$gte":
            return value >= operand
        if operator == "$lt":
            return value < operand
        return value <= operand
    except TypeError:
        return False


def _apply_operator(value: Any, operator: str, operand: Any) -> bool:
    if operator == "$eq":
        return _equals(value, operand)
    if operator == "$ne":
        return not _equals(value, operand)
    if operator in ("$gt", "$gte", "$lt", "$lte"):
        return _compare(value, operator, operand)
    if operator in ("$in", "$nin"):
        if not isinstance(operand, (list, tuple)):
            raise InvalidQueryError(f"{operator} needs an array")
        found = any(_equals(value, item) for item in operand)
        return found if operator == "$in" else not found
    if operator == "$exists":
        return (value is not _MISSING) == bool(operand)
    raise InvalidQueryError(f"Unknown operator: {operator}")


def matches(document: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """Return True if the document satisfies the (normalized) filter."""
    if not query:
        return True
    for key, condition in query.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
        elif key.startswith("$"):
            raise InvalidQueryError(f"Unknown top-level operator: {key}")
        else:
            value = lookup(document, key)
            if is_operator_document(condition):
                if not all(_apply_operator(value, op, operand) for op, operand in condition.items()):
                    return False
            elif not _equals(value, condition):
                return False
    return True


def validate_filter(query: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if query is None:
        return {}
    if not isinstance(query, dict):
        raise InvalidQueryError(f"Filter must be a document, got {type(query).__name__}")
    for key, condition in query.items():
        if key in ("$and", "$or"):
            if not isinstance(condition, list):
                raise InvalidQueryError(f"{key} needs an array")
            for sub in condition:
                validate_filter(sub)
        elif key.startswith("$"):
            raise InvalidQueryError(f"Unknown top-level operator: {key}")
        elif is_operator_document(condition):
            for operator in condition:
                if operator not in SUPPORTED_OPERATORS:
                    raise InvalidQueryError(f"Unknown operator: {operator}")
    return normalize_value(query)


def json_path(field: str) -> Optional[str]:
    """SQL literal of the json_extract path for a dotted field, or None if it cannot be quoted."""
    parts = field.split(".")
    if any(not part or '"' in part or "'" in part for part in parts):
        return None
    return "'$" + "".join(f'."{part}"' for part in parts) + "'"


def _is_sql_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def translate_filter(query: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """
    Build a SQL WHERE clause that selects a superset of the matching rows.

    Conditions that cannot be expressed over scalar json_extract values are
    left to the Python matcher.
    """
    clauses: List[str] = []
    params: List[Any] = []

    for key, condition in query.items():
        if key.startswith("$"):
            continue

        if key == "_id" and not is_operator_document(condition):
            clauses.append("_id = ?")
            params.append(encode_key(condition))
            continue

        path = json_path(key)
        if path is None:
            continue
        expression = f"json_extract(doc, {path})"
        if _is_sql_scalar(condition):
            clauses.append(f"{expression} = ?")
            params.append(condition)
        elif is_operator_document(condition):
            for operator, operand in condition.items():
                if operator in COMPARISON_OPERATORS and _is_sql_scalar(operand):
                    clauses.append(f"{expression} {COMPARISON_OPERATORS[operator]} ?")
                    params.append(operand)
                elif operator == "$in" and operand and all(_is_sql_scalar(item) for item in operand):
                    placeholders = ", ".join("?" for _ in operand)
                    clauses.append(f"{expression} IN ({placeholders})")
                    params.extend(operand)

    where = " AND ".join(clauses) if clauses else "1"
    return where, params


def normalize_sort(sort: Optional[SortSpec]) -> List[Tuple[str, int]]:
    if not sort:
        return []
    items = list(sort.items()) if isinstance(sort, dict) else list(sort)
    normalized = []
    for item in items:
        try:
            field, direction = item
        except (TypeError, ValueError):
            raise InvalidQueryError(f"Invalid sort specification: {item!r}")
        if direction not in (1, -1) or isinstance(direction, bool):
            raise InvalidQueryError(f"Sort direction for {field!r} must be 1 or -1")
        normalized.append((field, int(direction)))
    return normalized


def translate_sort(sort: List[Tuple[str, int]]) -> Optional[str]:
    """ORDER BY clause for the sort, or None when a field cannot be addressed in SQL."""
    terms = []
    for field, direction in sort:
        order = "ASC" if direction == 1 else "DESC"
        if field == "_id":
            terms.append(f"_id {order}")
            continue
        path = json_path(field)
        if path is None:
            return None
        terms.append(f"json_extract(doc, {path}) {order}")
    if not terms:
        return "rowid ASC"
    last_order = "ASC" if sort[-1][1] == 1 else "DESC"
    terms.append(f"rowid {last_order}")
    return ", ".join(terms)


_TYPE_ORDER = {type(None): 0, int: 1, float: 1, str: 2, dict: 3, list: 4, bytes: 5, bool: 6}


def _sort_key(value: Any) -> Tuple[int, Any]:
    if value is _MISSING:
        return (0, 0)
    rank = _TYPE_ORDER.get(type(value), 7)
    if rank in (0, 3, 4):
        return (rank, str(value))
    return (rank, value)


def sort_documents(documents: Iterable[Dict[str, Any]], sort: List[Tuple[str, int]]) -> List[Dict[str, Any]]:
    result = list(documents)
    for field, direction in reversed(sort):
        result.sort(key=lambda doc: _sort_key(lookup(doc, field)), reverse=direction == -1)
    return result


def apply_projection(document: Dict[str, Any], projection: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply a top-level inclusion or exclusion projection, keeping field order."""
    if not projection:
        return document

    include_id = bool(projection.get("_id", 1))
    fields = {key: bool(value) for key, value in projection.items() if key != "_id"}

    if not fields:
        if include_id:
            return document
        return {key: value for key, value in document.items() if key != "_id"}

    modes = set(fields.values())
    if len(modes) > 1:
        raise InvalidQueryError("Projection cannot mix inclusion and exclusion")

    if modes == {True}:
        return {
            key: value for key, value in document.items()
            if key in fields or (key == "_id" and include_id)
        }
    return {
        key: value for key, value in document.items()
        if key not in fields and not (key == "_id" and not include_id)
    }


def apply_update(document: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the document with $set/$unset applied to top-level or dotted fields."""
    if not update or not all(key.startswith("$") for key in update):
        raise InvalidQueryError("Update document must only contain update operators")

    result = dict(document)
    for operator, fields in update.items():
        if operator not in ("$set", "$unset"):
            raise InvalidQueryError(f"Unsupported update operator: {operator}")
        for path, value in fields.items():
            if path == "_id" or path.startswith("_id."):
                raise InvalidQueryError("The _id field cannot be modified")
            parts = path.split(".")
            target = result
            for part in parts[:-1]:
                child = target.get(part)
                child = dict(child) if isinstance(child, dict) else {}
                target[part] = child
                target = child
            if operator == "$set":
                target[parts[-1]] = normalize_value(value)
            else:
                target.pop(parts[-1], None)
    return result
