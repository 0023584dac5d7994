"""Input schemas for tools, derived from pydantic models.

A tool declares its input as a `ToolInput` subclass. `generate_schema()`
turns that class into the JSON schema advertised to the model, and
`parse_input()` decodes the raw payload the model sends back.
"""

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ToolError


class ToolInput(BaseModel):
    """Base for tool input shapes. Undeclared properties are rejected."""

    model_config = ConfigDict(extra="forbid")


def _resolve_ref(ref: str, defs: dict) -> dict:
    # Only local refs of the form "#/$defs/Name" are produced by pydantic.
    name = ref.rsplit("/", 1)[-1]
    if name not in defs:
        raise KeyError(f"unresolvable schema reference {ref!r}")
    return defs[name]


def _inline(node, defs: dict, seen: tuple = ()):
    """Return a copy of `node` with every $ref replaced by its definition."""
    if isinstance(node, list):
        return [_inline(item, defs, seen) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        ref = node["$ref"]
        if ref in seen:
            raise ValueError(f"recursive schema reference {ref!r} cannot be inlined")
        target = _inline(_resolve_ref(ref, defs), defs, seen + (ref,))
        siblings = {k: v for k, v in node.items() if k != "$ref"}
        return {**target, **_inline(siblings, defs, seen)}

    out = {}
    for key, value in node.items():
        if key in ("$defs", "title"):
            continue
        if key == "properties":
            # Keys here are field names, not schema keywords; a field may be called "title".
            out[key] = {
                name: _inline(sub, defs, seen) for name, sub in value.items()
            }
        else:
            out[key] = _inline(value, defs, seen)
    return out


def generate_schema(shape: type[BaseModel]) -> dict:
    """Build a fully inlined JSON schema for `shape`.

    The result lists each field's type and description, marks fields without a
    default as required, and disallows additional properties. No `$ref` or
    `$defs` appear in the output.
    """
    raw = shape.model_json_schema()
    defs = raw.get("$defs", {})
    schema = _inline(raw, defs)

    schema["type"] = "object"
    schema.setdefault("properties", {})
    schema["additionalProperties"] = False
    if "required" not in schema:
        schema["required"] = []
    return schema


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "input"
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "invalid input: " + "; ".join(parts)


def parse_input(shape: type[BaseModel], raw):
    """Decode a raw tool payload into `shape`.

    `raw` is the JSON text the model supplied (or an already-decoded dict).
    Raises ToolError on malformed JSON or on values that do not fit the shape.
    """
    try:
        if isinstance(raw, (str, bytes, bytearray)):
            if not raw or not raw.strip():
                raw = "{}"
            return shape.model_validate_json(raw)
        return shape.model_validate(raw if raw is not None else {})
    except ValidationError as exc:
        raise ToolError(_format_validation_error(exc)) from exc
