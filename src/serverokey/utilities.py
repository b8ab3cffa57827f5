"""
Whitelisted utility namespaces for expressions.

Expressions cannot import arbitrary modules. ``require(name)`` only resolves
the fixed set of namespaces registered here:

- ``password``: password hashing and verification (passlib CryptContext)
- ``schema``: schema-validation combinators compiled to JSON Schema and
  checked with jsonschema

Example:
    {"set": "context.hash", "to": "require('password').hash(body.password)"}
    {"set": "context.id", "to": "schema.string(pattern='^\\\\d+$').transform('int').parse(body.id)"}
"""

import copy
from typing import Any, Callable, Dict, List, Optional

from jsonschema import Draft202012Validator
from passlib.context import CryptContext

from .exceptions import EvaluationError, ValidationError


_JSON_TYPE_NAMES = {
    dict: "object",
    list: "array",
    str: "string",
    bool: "boolean",
    int: "integer",
    float: "number",
    type(None): "null",
}

_TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "int": int,
    "float": float,
    "str": str,
    "strip": lambda value: value.strip(),
    "lower": lambda value: value.lower(),
    "upper": lambda value: value.upper(),
}


class PasswordHasher:
    """Password hashing namespace exposed as ``require('password')``."""

    def __init__(self, schemes: Optional[List[str]] = None):
        self._context = CryptContext(
            schemes=schemes or ["pbkdf2_sha256"], deprecated="auto"
        )

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: Any, hashed: Any) -> bool:
        if not isinstance(password, str) or not isinstance(hashed, str):
            return False
        try:
            return self._context.verify(password, hashed)
        except ValueError:
            # Unknown or malformed hash
            return False


class Schema:
    """
    Immutable validator built from a JSON Schema fragment.

    Combinator methods return new Schema instances, so a schema stored in the
    context can be reused safely.

    Example:
        >>> s = SchemaBuilder().string(min_length=3)
        >>> s.parse("abc")
        'abc'
        >>> s.safe_parse(1)["success"]
        False
    """

    def __init__(self, definition: Dict[str, Any], transforms: tuple = ()):
        self._definition = definition
        self._transforms = transforms

    @property
    def definition(self) -> Dict[str, Any]:
        return copy.deepcopy(self._definition)

    def _extend(self, **fields: Any) -> "Schema":
        definition = dict(self._definition)
        definition.update({k: v for k, v in fields.items() if v is not None})
        return Schema(definition, self._transforms)

    def min(self, value: int) -> "Schema":
        if self._definition.get("type") == "string":
            return self._extend(minLength=value)
        if self._definition.get("type") == "array":
            return self._extend(minItems=value)
        return self._extend(minimum=value)

    def max(self, value: int) -> "Schema":
        if self._definition.get("type") == "string":
            return self._extend(maxLength=value)
        if self._definition.get("type") == "array":
            return self._extend(maxItems=value)
        return self._extend(maximum=value)

    def regex(self, pattern: str) -> "Schema":
        return self._extend(pattern=pattern)

    def nullable(self) -> "Schema":
        return Schema({"anyOf": [self._definition, {"type": "null"}]}, self._transforms)

    def transform(self, name: str) -> "Schema":
        if name not in _TRANSFORMS:
            raise EvaluationError(f"transform('{name}')")
        return Schema(self._definition, self._transforms + (name,))

    def parse(self, value: Any) -> Any:
        """Validate ``value`` and return it, transformed; raise ValidationError otherwise."""
        validator = Draft202012Validator(self._definition)
        errors = sorted(validator.iter_errors(value), key=lambda e: list(e.path))
        if errors:
            issues = [
                {"path": list(error.path), "message": _describe(error, value)}
                for error in errors
            ]
            raise ValidationError(
                "; ".join(issue["message"] for issue in issues), issues=issues
            )
        for name in self._transforms:
            try:
                value = _TRANSFORMS[name](value)
            except (TypeError, ValueError, AttributeError) as e:
                raise ValidationError(
                    f"Transform '{name}' failed: {e}",
                    issues=[{"path": [], "message": str(e)}],
                )
        return value

    def safe_parse(self, value: Any) -> Dict[str, Any]:
        try:
            return {"success": True, "data": self.parse(value)}
        except ValidationError as e:
            return {"success": False, "error": e.to_dict()}

    def __repr__(self) -> str:
        return f"Schema({self._definition!r})"


class SchemaBuilder:
    """Combinator entry points exposed as ``schema`` / ``require('schema')``."""

    def string(self, min_length=None, max_length=None, pattern=None) -> Schema:
        return Schema({"type": "string"})._extend(
            minLength=min_length, maxLength=max_length, pattern=pattern
        )

    def number(self, minimum=None, maximum=None) -> Schema:
        return Schema({"type": "number"})._extend(minimum=minimum, maximum=maximum)

    def integer(self, minimum=None, maximum=None) -> Schema:
        return Schema({"type": "integer"})._extend(minimum=minimum, maximum=maximum)

    def boolean(self) -> Schema:
        return Schema({"type": "boolean"})

    def enum(self, values: List[Any]) -> Schema:
        return Schema({"enum": list(values)})

    def array(self, items: Optional[Schema] = None, min_items=None, max_items=None) -> Schema:
        definition: Dict[str, Any] = {"type": "array"}
        if items is not None:
            definition["items"] = items.definition
        return Schema(definition)._extend(minItems=min_items, maxItems=max_items)

    def object(self, properties: Optional[Dict[str, Schema]] = None, required=None) -> Schema:
        properties = properties or {}
        definition: Dict[str, Any] = {
            "type": "object",
            "properties": {k: v.definition for k, v in properties.items()},
        }
        definition["required"] = list(required) if required is not None else list(properties)
        return Schema(definition)

    def from_json_schema(self, definition: Dict[str, Any]) -> Schema:
        Draft202012Validator.check_schema(definition)
        return Schema(copy.deepcopy(definition))


def _describe(error: Any, value: Any) -> str:
    if error.validator == "type":
        instance = error.instance
        received = _JSON_TYPE_NAMES.get(type(instance), type(instance).__name__)
        return f"Invalid input: expected {error.validator_value}, received {received}"
    return error.message


def build_namespaces() -> Dict[str, Any]:
    """Create the fixed set of namespaces resolvable through ``require()``."""
    return {
        "password": PasswordHasher(),
        "schema": SchemaBuilder(),
    }
