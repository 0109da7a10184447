"""Tests for the prompt runner (template -> prompt -> streamed result)."""

import io
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from display import TerminalSink
from llm_client import APIError, EmptyResponseError, NetworkError
from pipeline import CLIPBOARD_NOTICE, COMPLETE_BANNER, PromptRunner
from templates import TemplateNotFound, registry_from_document


def streaming_client(*fragments: str, detected: str = "English") -> MagicMock:
    """Mock client that streams ``fragments`` and answers language detection."""
    client = MagicMock()

    def call(model, prompt, on_delta=None, stream=True):
        if not stream:
            return detected
        for fragment in fragments:
            if on_delta is not None:
                on_delta(fragment)
        return "".join(fragments)

    client.call.side_effect = call
    return client


@pytest.fixture
def registry(config_document):
    return registry_from_document(config_document)


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def clipboard() -> MagicMock:
    return MagicMock()


def make_runner(settings, registry, client, output, clipboard=None, verbose=False) -> PromptRunner:
    return PromptRunner(
        settings=settings,
        registry=registry,
        client=client,
        sink=TerminalSink(output),
        clipboard=clipboard,
        verbose=verbose,
    )


class TestPlainTemplate:
    def test_streams_result_and_copies_it(self, settings, registry, output, clipboard):
        client = streaming_client("Hello", " ", "World")
        runner = make_runner(settings, registry, client, output, clipboard)

        result = runner.run("Summarize", "some text")

        assert result.display_text == "Hello World"
        assert output.getvalue() == "### Result\n\nHello World" + COMPLETE_BANNER
        clipboard.copy.assert_called_once_with("Hello World")
        clipboard.notify.assert_called_once_with(CLIPBOARD_NOTICE)

    def test_prompt_and_default_model(self, settings, registry, output):
        client = streaming_client("ok")
        make_runner(settings, registry, client, output).run("Summarize", "some text")

        args, kwargs = client.call.call_args
        assert args == ("default-model", "Summarize this: some text")
        assert kwargs["stream"] is True

    def test_template_model(self, settings, registry, output):
        client = streaming_client("ok")
        make_runner(settings, registry, client, output).run("TemplateWithModel", "x")
        assert client.call.call_args.args[0] == "template-specific-model"

    def test_cli_model_overrides_template(self, settings, registry, output):
        client = streaming_client("ok")
        make_runner(settings, registry, client, output).run("TemplateWithModel", "x", cli_model="cli-model")
        assert client.call.call_args.args[0] == "cli-model"

    def test_verbose_shows_input_and_prompt(self, settings, registry, output):
        client = streaming_client("ok")
        make_runner(settings, registry, client, output, verbose=True).run("NoPlaceholder", "hello")

        text = output.getvalue()
        assert "### User Input\n<details>" in text
        assert "```\nhello\n```" in text
        assert "```\nJust process hello\n```" in text
        assert text.index("### Final Prompt") < text.index("### Result")


class TestJSONTemplate:
    def test_extracts_field_after_raw_output(self, settings, registry, output, clipboard):
        client = streaming_client('{"bullet_points": ["Point 1", "Point 2"], ', '"title": "T"}')
        runner = make_runner(settings, registry, client, output, clipboard)

        result = runner.run("BulletPoints", "notes")

        text = output.getvalue()
        assert text.startswith("### Result\n\n#### Raw JSON Output\n\n")
        assert "#### Extracted JSON Field (_bullet_points_)\n\n* Point 1\n* Point 2" in text
        assert text.endswith(COMPLETE_BANNER)
        clipboard.copy.assert_called_once_with("* Point 1\n* Point 2")
        assert not result.extraction_failed

    def test_prompt_carries_schema_and_detected_language(self, settings, registry, output):
        client = streaming_client('{"text": "Hallo"}', detected="German")
        make_runner(settings, registry, client, output).run("TextReviser", "Hallo Welt")

        detect_call, main_call = client.call.call_args_list
        assert detect_call.args[0] == "lang-detect-model"
        assert detect_call.kwargs["stream"] is False

        prompt = main_call.args[1]
        assert prompt.startswith("Output instruction: the input is in language: German")
        assert '"additional_info": "string"' in prompt
        assert prompt.endswith("Revise: Hallo Welt")

    def test_failed_extraction_copies_raw(self, settings, registry, output, clipboard):
        client = streaming_client("not json at all")
        result = make_runner(settings, registry, client, output, clipboard).run("BulletPoints", "notes")

        assert result.extraction_failed
        assert output.getvalue().endswith(
            "#### Extracted JSON Field (_bullet_points_)\n\n" + COMPLETE_BANNER
        )
        clipboard.copy.assert_called_once_with("not json at all")


class TestFailures:
    def test_unknown_template_before_network(self, settings, registry, output):
        client = streaming_client("x")
        with pytest.raises(TemplateNotFound):
            make_runner(settings, registry, client, output).run("Nope", "x")
        client.call.assert_not_called()
        assert output.getvalue() == ""

    def test_network_error_written_and_raised(self, settings, registry, output, clipboard):
        client = MagicMock()
        client.call.side_effect = NetworkError("Cannot connect to LLM API", 7)
        runner = make_runner(settings, registry, client, output, clipboard)

        with pytest.raises(NetworkError):
            runner.run("Summarize", "x")

        assert "**Error: LLM command failed with code 7**" in output.getvalue()
        clipboard.copy.assert_not_called()

    def test_api_error_written(self, settings, registry, output):
        client = MagicMock()
        client.call.side_effect = APIError("Invalid API key", 401)

        with pytest.raises(APIError):
            make_runner(settings, registry, client, output).run("Summarize", "x")
        assert "Invalid API key (HTTP 401)" in output.getvalue()

    def test_empty_response(self, settings, registry, output, clipboard):
        client = streaming_client()
        with pytest.raises(EmptyResponseError):
            make_runner(settings, registry, client, output, clipboard).run("Summarize", "x")

        assert "**Error: No response received from the model**" in output.getvalue()
        assert COMPLETE_BANNER not in output.getvalue()
        clipboard.copy.assert_not_called()

    def test_language_detection_failure_is_not_fatal(self, settings, registry, output):
        client = MagicMock()

        def call(model, prompt, on_delta=None, stream=True):
            if not stream:
                raise NetworkError("timeout", 28)
            on_delta('{"text": "ok"}')
            return '{"text": "ok"}'

        client.call.side_effect = call
        result = make_runner(settings, registry, client, output).run("TextReviser", "hello")

        assert result.display_text == "ok"
        assert not client.call.call_args.args[1].startswith("Output instruction")
