"""Tests for prompt composition, language handling and model selection."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from llm_client import NetworkError
from models import TemplateProperties
from prompts import (
    JSON_INSTRUCTION,
    compose_prompt,
    detect_language,
    resolve_model,
    resolve_output_language,
)


class TestComposePrompt:
    def test_substitutes_placeholder(self):
        assert compose_prompt("Summarize: {{input}}", "hello") == "Summarize: hello"

    def test_substitutes_every_placeholder(self):
        assert compose_prompt("{{input}} / {{input}}", "x") == "x / x"

    def test_input_is_not_re_expanded(self):
        assert compose_prompt("A {{input}} B", "{{input}}") == "A {{input}} B"

    def test_appends_input_without_placeholder(self):
        assert compose_prompt("Just process", "hello") == "Just process hello"

    def test_json_instruction_prepended(self):
        props = TemplateProperties(json_schema={"text": "string"}, json_field="text")
        prompt = compose_prompt("Revise: {{input}}", "hi", props)

        instruction = JSON_INSTRUCTION.format(schema='{"text": "string"}')
        assert prompt == f"{instruction}\n\nRevise: hi"

    def test_schema_without_field_still_instructs(self):
        props = TemplateProperties(json_schema={"a": "string"})
        assert compose_prompt("{{input}}", "x", props).startswith("IMPORTANT: You must respond with valid JSON")

    def test_empty_schema_still_instructs(self):
        props = TemplateProperties(json_schema={}, json_field="a")
        assert compose_prompt("{{input}}", "x", props) == JSON_INSTRUCTION.format(schema="{}") + "\n\nx"

    def test_language_instruction_goes_first(self):
        props = TemplateProperties(json_schema={"text": "string"})
        prompt = compose_prompt("Revise: {{input}}", "hola", props, language="Spanish")

        lines = prompt.split("\n")
        assert lines[0] == (
            "Output instruction: the input is in language: Spanish, preserve this language in the output."
        )
        assert lines[1].startswith("IMPORTANT:")
        assert prompt.endswith("\n\nRevise: hola")

    def test_no_language_no_instruction(self):
        assert compose_prompt("{{input}}", "x", language=None) == "x"
        assert compose_prompt("{{input}}", "x", language="") == "x"


class TestDetectLanguage:
    def test_first_line_trimmed(self):
        client = MagicMock()
        client.call.return_value = "  German \nBecause of the umlauts."

        assert detect_language("Guten Tag", client, "detector") == "German"
        args, kwargs = client.call.call_args
        assert args[0] == "detector"
        assert "Guten Tag" in args[1]
        assert kwargs["stream"] is False

    def test_empty_answer(self):
        client = MagicMock()
        client.call.return_value = "   "
        assert detect_language("x", client, "detector") == ""


class TestResolveOutputLanguage:
    def test_detects_when_enabled(self):
        client = MagicMock()
        client.call.return_value = "French"
        props = TemplateProperties(detect_language=True, output_language="German")

        assert resolve_output_language(props, "Bonjour", client, "detector") == "French"

    def test_fixed_language(self):
        client = MagicMock()
        props = TemplateProperties(output_language="German")

        assert resolve_output_language(props, "Hello", client, "detector") == "German"
        client.call.assert_not_called()

    def test_no_language_properties(self):
        client = MagicMock()
        assert resolve_output_language(TemplateProperties(), "Hello", client, "detector") is None
        client.call.assert_not_called()

    def test_detection_failure_is_not_fatal(self, caplog):
        client = MagicMock()
        client.call.side_effect = NetworkError("Cannot connect", 7)
        props = TemplateProperties(detect_language=True)

        assert resolve_output_language(props, "Hello", client, "detector") is None
        assert "Language detection failed" in caplog.text

    def test_empty_detection_answer(self):
        client = MagicMock()
        client.call.return_value = ""
        props = TemplateProperties(detect_language=True)
        assert resolve_output_language(props, "Hello", client, "detector") is None


class TestResolveModel:
    def test_cli_wins(self):
        selection = resolve_model("cli-model", "template-model", "default-model")
        assert selection.name == "cli-model"
        assert selection.source == "cli"

    def test_template_over_default(self):
        selection = resolve_model(None, "template-model", "default-model")
        assert (selection.name, selection.source) == ("template-model", "template")

    def test_default(self):
        selection = resolve_model("", None, "default-model")
        assert (selection.name, selection.source) == ("default-model", "default")
