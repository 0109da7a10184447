"""Pipeline for one invocation: template -> prompt -> streamed reply -> result.

The reply is streamed into the display sink as it arrives; JSON extraction and
formatting run once the stream has completed.
"""

import logging
from typing import Protocol

from config import Settings
from extraction import process_response
from llm_client import EmptyResponseError, LLMClient, LLMClientError
from models import ExtractionResult
from prompts import compose_prompt, resolve_model, resolve_output_language
from properties import encode_properties
from templates import TemplateRegistry

logger = logging.getLogger(__name__)

COMPLETE_BANNER = "\n\n---\n\n**✓ Processing complete**\n"
CLIPBOARD_NOTICE = "LLM results copied to clipboard"


class Clipboard(Protocol):
    def copy(self, text: str) -> bool: ...

    def notify(self, message: str) -> bool: ...


class PromptRunner:
    """Runs user input through a template and delivers the result."""

    def __init__(
        self,
        settings: Settings,
        registry: TemplateRegistry,
        client: LLMClient,
        sink,
        clipboard: Clipboard | None = None,
        verbose: bool = False,
    ):
        self._settings = settings
        self._registry = registry
        self._client = client
        self._sink = sink
        self._clipboard = clipboard
        self._verbose = verbose

    def run(self, template_name: str, user_input: str, cli_model: str | None = None) -> ExtractionResult:
        """Process ``user_input`` with the named template.

        Raises TemplateNotFound before any network call, LLMClientError when
        the completion fails. Extraction problems never raise.
        """
        template = self._registry.get(template_name)
        props = self._registry.properties(template_name)
        model = resolve_model(cli_model, props.model, self._settings.default_model)

        logger.debug("Template properties for '%s': %s", template_name, encode_properties(props))
        logger.debug("Using model: %s (from %s)", model.name, model.source)

        language = resolve_output_language(
            props, user_input, self._client, self._settings.language_detection_model
        )
        prompt = compose_prompt(template.body, user_input, props, language)
        logger.debug("Final prompt: %s", prompt)

        if self._verbose:
            self._sink.write(_details_block("User Input", user_input))
            self._sink.write(_details_block("Final Prompt", prompt))

        self._sink.write("### Result\n\n")
        if props.extracts_json:
            self._sink.write("#### Raw JSON Output\n\n")

        try:
            response = self._client.call(model.name, prompt, on_delta=self._sink.write, stream=True)
        except LLMClientError as e:
            logger.error("LLM request failed: %s", e)
            self._sink.write(f"\n\n**Error: LLM command failed with code {e.exit_code}**\n\n{e}\n")
            raise

        if props.extracts_json:
            self._sink.reformat_json()

        if not response:
            self._sink.write("\n\n**Error: No response received from the model**\n")
            raise EmptyResponseError("No response received from the model")

        result = process_response(response, props.json_schema, props.json_field)

        if props.extracts_json:
            self._sink.write(f"\n\n---\n\n#### Extracted JSON Field (_{props.json_field}_)\n\n")
            if not result.extraction_failed:
                self._sink.write(result.display_text)

        self._sink.write(COMPLETE_BANNER)
        self._sink.finish()

        if self._clipboard is not None:
            self._clipboard.copy(result.display_text)
            self._clipboard.notify(CLIPBOARD_NOTICE)

        return result


def _details_block(title: str, content: str) -> str:
    return f"### {title}\n<details>\n<summary>Expand</summary>\n\n```\n{content}\n```\n</details>\n\n"
