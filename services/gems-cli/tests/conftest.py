"""Shared test fixtures for gems tests."""

import json
import sys
from pathlib import Path

import pytest
import yaml

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings


def sse_body(*fragments: str, done: bool = True) -> str:
    """Build an SSE stream carrying ``fragments`` as chat deltas."""
    lines = []
    for fragment in fragments:
        event = {"choices": [{"index": 0, "delta": {"content": fragment}}]}
        lines.append(f"data: {json.dumps(event)}")
        lines.append("")
    if done:
        lines.append("data: [DONE]")
        lines.append("")
    return "\n".join(lines)


@pytest.fixture(autouse=True)
def _clear_gems_env(monkeypatch):
    """Keep developer GEMS_* variables from leaking into settings."""
    import os

    for key in list(os.environ):
        if key.upper().startswith("GEMS_"):
            monkeypatch.delenv(key)


@pytest.fixture
def config_section() -> dict:
    return {
        "api_base_url": "http://localhost:11434/v1",
        "api_key": "",
        "api_timeout": 120,
        "default_model": "default-model",
        "language_detection_model": "lang-detect-model",
        "default_prompt_template": "Passthrough",
        "reasoning_effort": "",
        "result_viewer_app": "",
    }


@pytest.fixture
def config_document(config_section: dict) -> dict:
    return {
        "configuration": config_section,
        "prompt_templates": {
            "Summarize": {"template": "Summarize this: {{input}}"},
            "NoPlaceholder": {"template": "Just process"},
            "TemplateWithModel": {
                "template": "Process with specific model: {{input}}",
                "properties": {"model": "template-specific-model"},
            },
            "TextReviser": {
                "template": "Revise: {{input}}",
                "properties": {
                    "detect_language": True,
                    "json_schema": {"text": "string", "additional_info": "string"},
                    "json_field": "text",
                },
            },
            "BulletPoints": {
                "template": "Bullets: {{input}}",
                "properties": {
                    "json_schema": {"bullet_points": ["string"], "title": "string"},
                    "json_field": "bullet_points",
                },
            },
            "Empty": {"properties": {"detect_language": True}},
        },
    }


@pytest.fixture
def config_file(tmp_path: Path, config_document: dict) -> Path:
    path = tmp_path / "gems.yml"
    path.write_text(yaml.safe_dump(config_document, allow_unicode=True), encoding="utf-8")
    return path


@pytest.fixture
def settings(config_section: dict) -> Settings:
    return Settings(**{k: v for k, v in config_section.items() if v != ""})


@pytest.fixture
def mock_markdown_response() -> str:
    """Model reply wrapped in a multi-line markdown code fence."""
    return '```json\n{"items": ["a", "b"]}\n```'


@pytest.fixture
def mock_compact_fence_response() -> str:
    """Streaming models often emit the whole fenced block on one line."""
    return 'Here you go:\n```json{"summary": "Short and sweet", "score": 3}```'


@pytest.fixture
def mock_preamble_response() -> str:
    """Model reply with text before and after the JSON."""
    return 'Here is the result:\n\n{"text": "Revised text", "additional_info": "none"}\n\nHope it helps!'
