"""Response post-processing: isolate JSON, extract a field, format it.

Handles: markdown ```json fences (compact single-line and multi-line), bare
JSON replies, and JSON objects embedded in surrounding prose. Also reformats
compact ```json{...}``` blocks in saved output into pretty multi-line blocks.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from models import ExtractionResult

logger = logging.getLogger(__name__)

FENCE = "```"
JSON_FENCE = "```json"

_COMPACT_FENCE_RE = re.compile(r"```json(\{.*)```")


class ExtractionFailed(Exception):
    """Field could not be extracted; callers fall back to the raw response."""


def process_response(raw: str, schema: Any = None, field: str | None = None) -> ExtractionResult:
    """Turn the model's reply into the text to display.

    Extraction only runs when both a schema and a field are configured.
    Otherwise, or when extraction fails, the raw reply is displayed as is.
    """
    if schema is None or not field:
        return ExtractionResult(raw_response=raw, display_text=raw)

    logger.debug("Extracting JSON field: %s", field)
    json_content = isolate_json(raw)
    logger.debug("Extracted JSON content: %s", json_content)

    try:
        value = extract_field(json_content, field)
    except ExtractionFailed as e:
        logger.debug("Warning: Could not extract JSON field '%s', using full response: %s", field, e)
        logger.debug("JSON parsing failed. Response was: %s", raw)
        return ExtractionResult(
            raw_response=raw,
            json_content=json_content,
            display_text=raw,
            extraction_failed=True,
        )

    logger.debug("Successfully extracted field value")
    return ExtractionResult(
        raw_response=raw,
        json_content=json_content,
        extracted=value,
        display_text=format_extracted(value),
    )


def isolate_json(raw: str) -> str:
    """Narrow a reply down to its JSON part.

    Order: a ```json fenced block, the whole reply if it parses, the first
    balanced {...} object. Falls back to the whole reply.
    """
    if JSON_FENCE in raw:
        fenced = _fenced_json(raw)
        if fenced is not None:
            return fenced

    if _loads(raw) is not None:
        return raw

    obj = first_json_object(raw)
    if obj is not None:
        return obj
    return raw


def _fenced_json(raw: str) -> str | None:
    lines = raw.split("\n")

    for line in lines:
        if "```json{" in line:
            match = _COMPACT_FENCE_RE.search(line)
            if match:
                return match.group(1)

    # Multi-line form: lines between the ```json line and the next fence
    block: list[str] = []
    inside = False
    for line in lines:
        if not inside:
            if JSON_FENCE in line:
                inside = True
            continue
        if FENCE in line:
            return "\n".join(block)
        block.append(line)
    if inside and block:
        # Unterminated fence, e.g. a truncated reply
        return "\n".join(block)
    return None


def first_json_object(text: str) -> str | None:
    """First top-level balanced {...} in ``text``, ignoring braces inside strings."""
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def fix_json_string_newlines(text: str) -> str:
    """Escape raw newlines that appear inside JSON string values.

    Models sometimes emit multi-line strings verbatim, which strict JSON
    rejects. Newlines between tokens are left alone.
    """
    out = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char == "\n":
                out.append("\\n")
                continue
            elif char == "\r":
                out.append("\\r")
                continue
        elif char == '"':
            in_string = True
        out.append(char)
    return "".join(out)


def _loads(text: str) -> Any | None:
    """json.loads that returns None instead of raising."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def parse_json(text: str) -> Any:
    """Parse JSON, retrying once with string newlines escaped."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(fix_json_string_newlines(text))
    except json.JSONDecodeError as e:
        raise ExtractionFailed(f"invalid JSON: {e}") from e


def extract_field(json_text: str, field: str) -> Any:
    """Look up a dotted field path in a JSON document.

    Raises ExtractionFailed when the JSON is invalid or the value is missing,
    null, an empty string or an empty array.
    """
    data = parse_json(json_text)

    value = data
    for part in field.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            raise ExtractionFailed(f"field '{field}' not found")

    if value is None or value == "" or value == []:
        raise ExtractionFailed(f"field '{field}' is empty")
    return value


def format_extracted(value: Any) -> str:
    """Text shown for an extracted value; arrays become bullet lists."""
    if isinstance(value, list):
        if not value:
            return ""
        if isinstance(value[0], dict):
            logger.debug("Array contains objects, formatting with titles and descriptions")
            return "\n".join(_object_bullet(item) for item in value)
        logger.debug("Array contains scalars, formatting as simple bullet points")
        return "\n".join(f"* {_scalar_text(item)}" for item in value)

    if isinstance(value, dict):
        return json.dumps(value, indent=2, ensure_ascii=False)
    return _scalar_text(value)


def _object_bullet(item: Any) -> str:
    if not isinstance(item, dict):
        return f"* {_scalar_text(item)}"
    title = item.get("title")
    if title is None or title == "":
        # No title to show; fall back to the element itself
        return f"* {json.dumps(item, ensure_ascii=False)}"
    line = f"* {_scalar_text(title)}"
    description = item.get("description")
    if description:
        line += f": {_scalar_text(description)}"
    return line


def _scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def format_compact_json_blocks(text: str) -> str:
    """Expand single-line ```json{...}``` blocks into pretty multi-line blocks.

    Lines whose JSON does not parse are left unchanged, as are multi-line
    fenced blocks and all other lines.
    """
    out: list[str] = []
    for line in text.split("\n"):
        if "```json{" not in line:
            out.append(line)
            continue

        prefix, _, after = line.partition(JSON_FENCE)
        body, sep, suffix = after.rpartition(FENCE)
        if not sep:
            out.append(line)
            continue

        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            out.append(line)
            continue

        if prefix.strip():
            out.append(prefix.rstrip())
        out.append(JSON_FENCE)
        out.extend(json.dumps(parsed, indent=2, ensure_ascii=False).split("\n"))
        out.append(FENCE)
        if suffix.strip():
            out.append(suffix.strip())
    return "\n".join(out)


def format_json_in_file(path: Path | str) -> None:
    """Rewrite a saved markdown file with its compact JSON blocks expanded."""
    path = Path(path)
    if not path.is_file():
        return
    original = path.read_text(encoding="utf-8")
    formatted = format_compact_json_blocks(original)
    if formatted != original:
        path.write_text(formatted, encoding="utf-8")
