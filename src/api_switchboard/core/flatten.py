import json
from typing import Any, Dict

COUNT_SUFFIX = "_count"


def _to_json(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


def flatten_object(value: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested objects into dot-joined field names.

    Arrays collapse into ``<field>_count`` and a JSON string under ``<field>``.
    """
    row: Dict[str, Any] = {}
    for key, item in value.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(item, dict):
            row.update(flatten_object(item, name))
        elif isinstance(item, (list, tuple)):
            row[f"{name}{COUNT_SUFFIX}"] = len(item)
            row[name] = _to_json(list(item))
        else:
            row[name] = item
    return row


def flatten_response(body: Any, key_column: str, key: str) -> Dict[str, Any]:
    """Turn one enrichment response into a single row keyed by ``key_column``."""
    if isinstance(body, dict):
        flat = flatten_object(body)
    elif isinstance(body, (list, tuple)):
        flat = flatten_object({"data": body})
    elif body is None:
        flat = {}
    else:
        flat = {"value": body}

    row = {key_column: key}
    row.update(flat)
    # The lookup key wins over any same-named response field
    row[key_column] = key
    return row
