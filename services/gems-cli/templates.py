"""Prompt template registry.

Templates are loaded once per invocation from the ``prompt_templates`` section
of the configuration document and held in an immutable registry that is passed
explicitly to whatever needs it.
"""

import logging
import re
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import ValidationError

from config import ConfigError, load_document
from models import PLACEHOLDER, Template, TemplateProperties
from properties import parse_properties

logger = logging.getLogger(__name__)

PASSTHROUGH = "Passthrough"
DESCRIPTION_LIMIT = 100


class TemplateNotFound(Exception):
    """Requested template does not exist (fatal)."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        listing = "\n".join(f"  - {n}" for n in available)
        super().__init__(f"Template '{name}' not found.\n\nAvailable templates:\n{listing}")


class TemplateRegistry:
    """Read-only mapping of template name to template and properties."""

    def __init__(
        self,
        templates: Mapping[str, Template],
        properties: Mapping[str, TemplateProperties] | None = None,
    ):
        self._templates = MappingProxyType(dict(templates))
        self._properties = MappingProxyType(dict(properties or {}))

    def __contains__(self, name: str) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def names(self) -> list[str]:
        return sorted(self._templates)

    def get(self, name: str) -> Template:
        try:
            return self._templates[name]
        except KeyError:
            raise TemplateNotFound(name, self.names()) from None

    def properties(self, name: str) -> TemplateProperties:
        self.get(name)
        return self._properties.get(name, TemplateProperties())

    def describe(self, name: str) -> str:
        """Short description: the template text that precedes the placeholder."""
        body = self.get(name).body
        if PLACEHOLDER not in body:
            return "Custom template"

        description = re.sub(r"\s+", " ", body.split(PLACEHOLDER, 1)[0]).strip()
        if not description:
            return "Custom template"
        if len(description) > DESCRIPTION_LIMIT:
            description = description[: DESCRIPTION_LIMIT - 3] + "..."
        return description


def builtin_templates() -> dict[str, Template]:
    return {PASSTHROUGH: Template(name=PASSTHROUGH, body=PLACEHOLDER)}


def registry_from_document(document: dict[str, Any], source: str = "configuration") -> TemplateRegistry:
    """Build the registry from a parsed configuration document."""
    section = document.get("prompt_templates")
    if not section:
        raise ConfigError(f"No templates found in {source}")
    if not isinstance(section, dict):
        raise ConfigError(f"'prompt_templates' in {source} must be a mapping")

    templates = builtin_templates()
    properties: dict[str, TemplateProperties] = {}
    loaded = 0

    for name, entry in section.items():
        name = str(name)
        body = entry.get("template") if isinstance(entry, dict) else None
        if not body or not isinstance(body, str):
            logger.debug("Skipping template without a body: %s", name)
            continue

        templates[name] = Template(name=name, body=body)
        loaded += 1
        logger.debug("Loaded template: %s", name)

        props = _parse_entry_properties(name, entry.get("properties"), source)
        if not props.is_empty():
            properties[name] = props
            logger.debug("Loaded properties for %s", name)

    if loaded == 0:
        raise ConfigError(f"No templates found in {source}")

    logger.debug("Found templates: %s", ",".join(sorted(templates)))
    return TemplateRegistry(templates, properties)


def _parse_entry_properties(name: str, raw: Any, source: str) -> TemplateProperties:
    if raw is None:
        return TemplateProperties()
    if isinstance(raw, str):
        return parse_properties(raw)
    if not isinstance(raw, dict):
        raise ConfigError(f"Properties of template '{name}' in {source} must be a mapping")

    values = {k: v for k, v in raw.items() if v is not None and v != ""}
    for key in ("output_language", "json_field", "model"):
        if key in values:
            values[key] = str(values[key])
    try:
        return TemplateProperties(**values)
    except ValidationError as e:
        problems = [f"{name}.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ConfigError(f"Invalid properties for template '{name}'", problems) from e


def load_registry(path: Path | str) -> TemplateRegistry:
    """Load templates from the YAML file at ``path``."""
    logger.debug("Loading templates from YAML file: %s", path)
    return registry_from_document(load_document(path), source=str(path))
