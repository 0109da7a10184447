"""Reader for the compact ``key=value`` template property format.

Older configurations store a template's properties as one whitespace-delimited
string, e.g. ``detect_language=true json_schema={"text": "string"} json_field=text``.
The in-memory representation is always ``TemplateProperties``; this module only
translates to and from the compact form.
"""

import json
import logging

from models import TemplateProperties

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "yes", "1", "on"}


def get_property(blob: str, key: str, default: str = "") -> tuple[str, bool]:
    """Look up ``key`` in a compact property string.

    The first ``key=`` occurrence wins. A ``json_schema`` value that starts
    with ``{`` runs until its braces balance, so it may contain spaces. Every
    other value ends at the next space.

    Returns (value, found). When the key is absent, (default, False).
    """
    padded = f" {blob} "
    marker = f" {key}="
    start = padded.find(marker)
    if start < 0:
        logger.debug("Property '%s' not found in '%s'", key, blob)
        return default, False

    rest = padded[start + len(marker):]

    if key == "json_schema" and rest.startswith("{"):
        value = _scan_braces(rest)
    else:
        value = rest.split(" ", 1)[0]

    logger.debug("Found property '%s' = '%s'", key, value)
    return value, True


def _scan_braces(text: str) -> str:
    """Return the prefix of ``text`` up to the brace closing the first ``{``."""
    depth = 0
    for i, char in enumerate(text):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[: i + 1]
    # Unbalanced: everything scanned belongs to the value
    return text.rstrip(" ")


def parse_properties(blob: str) -> TemplateProperties:
    """Decode a compact property string into ``TemplateProperties``."""
    if not blob or not blob.strip():
        return TemplateProperties()

    detect_language, _ = get_property(blob, "detect_language", "false")
    output_language, _ = get_property(blob, "output_language")
    raw_schema, has_schema = get_property(blob, "json_schema")
    json_field, _ = get_property(blob, "json_field")
    model, _ = get_property(blob, "model")

    json_schema = None
    if has_schema and raw_schema:
        try:
            json_schema = json.loads(raw_schema)
        except json.JSONDecodeError:
            # Loose schemas such as {items:[string]} are only ever shown to the model
            json_schema = raw_schema

    return TemplateProperties(
        detect_language=detect_language.lower() in _TRUE_VALUES,
        output_language=output_language or None,
        json_schema=json_schema,
        json_field=json_field or None,
        model=model or None,
    )


def encode_properties(props: TemplateProperties) -> str:
    """Render properties in the compact form, in a stable key order."""
    parts = []
    if props.detect_language:
        parts.append("detect_language=true")
    if props.output_language:
        parts.append(f"output_language={props.output_language}")
    if props.json_schema is not None:
        parts.append(f"json_schema={schema_to_text(props.json_schema)}")
    if props.json_field:
        parts.append(f"json_field={props.json_field}")
    if props.model:
        parts.append(f"model={props.model}")
    return " ".join(parts)


def schema_to_text(schema) -> str:
    """Single-line text for a schema: JSON for structured values, as-is for strings."""
    if isinstance(schema, str):
        return schema
    return json.dumps(schema, ensure_ascii=False)
