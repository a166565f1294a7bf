"""
Parameter validation against a tool's JSON-schema style declaration.

Only the subset tools actually declare is checked: ``required``,
``properties.<name>.type`` and unknown property names.
"""

from typing import Any, Dict, List

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    # bool is an int subclass; JSON keeps them apart
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
    "null": lambda v: v is None,
}


def _type_matches(expected: Any, value: Any) -> bool:
    if isinstance(expected, list):
        return any(_type_matches(option, value) for option in expected)
    check = _TYPE_CHECKS.get(expected)
    # Unrecognised type names are not enforced
    return check(value) if check else True


def validate_parameters(schema: Dict[str, Any], parameters: Dict[str, Any]) -> List[str]:
    """
    Check ``parameters`` against ``schema``.

    Returns:
        List[str]: Human-readable problems; empty when valid.
    """
    errors: List[str] = []
    if not isinstance(parameters, dict):
        return ["Parameters must be an object"]

    properties: Dict[str, Any] = (schema or {}).get("properties") or {}
    required: List[str] = (schema or {}).get("required") or []

    # 1. Missing required parameters
    for name in required:
        if name not in parameters:
            errors.append(f"Missing required parameter: {name}")

    # 2. Type checks for declared parameters
    for name, value in parameters.items():
        declared = properties.get(name)
        if declared is None:
            continue
        expected = declared.get("type") if isinstance(declared, dict) else None
        if expected and not _type_matches(expected, value):
            errors.append(
                f"Parameter '{name}' should be of type {expected}, got {type(value).__name__}"
            )

    # 3. Unknown parameters (only when the schema declares any)
    if properties:
        for name in parameters:
            if name not in properties:
                errors.append(f"Unknown parameter: {name}")

    return errors
