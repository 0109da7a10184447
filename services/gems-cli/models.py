"""Pydantic models shared by the prompt pipeline."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

PLACEHOLDER = "{{input}}"


class Template(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    body: str

    @property
    def has_placeholder(self) -> bool:
        return PLACEHOLDER in self.body


class TemplateProperties(BaseModel):
    """Per-template behavior flags."""

    model_config = ConfigDict(frozen=True)

    detect_language: bool = False
    output_language: str | None = None
    json_schema: Any | None = None
    json_field: str | None = None
    model: str | None = None

    @property
    def extracts_json(self) -> bool:
        # json_field only means something alongside a schema
        return self.json_schema is not None and bool(self.json_field)

    def is_empty(self) -> bool:
        return self == TemplateProperties()


class ModelSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    source: Literal["cli", "template", "default"]


class APIRequest(BaseModel):
    """Body of a chat/completions request."""

    model: str
    prompt: str
    stream: bool = True
    reasoning_effort: str | None = None
    temperature: int = 1

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": self.prompt}],
            "stream": self.stream,
            "temperature": self.temperature,
        }
        if self.reasoning_effort:
            payload["reasoning_effort"] = self.reasoning_effort
        return payload


class ExtractionResult(BaseModel):
    raw_response: str
    json_content: str | None = None
    extracted: Any | None = None
    display_text: str
    extraction_failed: bool = False
