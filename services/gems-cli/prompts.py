"""Prompt composition: template substitution, JSON and language directives."""

import logging

from llm_client import LLMClient, LLMClientError
from models import PLACEHOLDER, ModelSelection, TemplateProperties
from properties import schema_to_text

logger = logging.getLogger(__name__)

JSON_INSTRUCTION = (
    "IMPORTANT: You must respond with valid JSON that matches this exact schema: {schema}. "
    "Do not include any text outside the JSON response."
)

LANGUAGE_INSTRUCTION = (
    "Output instruction: the input is in language: {language}, preserve this language in the output."
)

LANGUAGE_DETECTION_PROMPT = (
    "You are a language identification specialist. Your only task is to determine the language "
    "of the provided text. Identify the language of this text. Respond with only the language "
    "name (e.g., 'English', 'Traditional Chinese'): {text}"
)


def compose_prompt(
    template_body: str,
    user_input: str,
    properties: TemplateProperties | None = None,
    language: str | None = None,
) -> str:
    """Build the final prompt sent to the model."""
    properties = properties or TemplateProperties()

    if PLACEHOLDER in template_body:
        # str.replace scans left to right once, so input is never re-expanded
        prompt = template_body.replace(PLACEHOLDER, user_input)
    else:
        prompt = f"{template_body} {user_input}"

    if properties.json_schema is not None:
        instruction = JSON_INSTRUCTION.format(schema=schema_to_text(properties.json_schema))
        prompt = f"{instruction}\n\n{prompt}"

    if language:
        prompt = f"{LANGUAGE_INSTRUCTION.format(language=language)}\n{prompt}"

    return prompt


def detect_language(user_input: str, client: LLMClient, model: str) -> str:
    """Ask the detection model for the input's language name."""
    reply = client.call(model, LANGUAGE_DETECTION_PROMPT.format(text=user_input), stream=False)
    lines = reply.strip().splitlines()
    return lines[0].strip() if lines else ""


def resolve_output_language(
    properties: TemplateProperties,
    user_input: str,
    client: LLMClient,
    detection_model: str,
) -> str | None:
    """Language to pin in the prompt, or None for no instruction."""
    if properties.detect_language:
        logger.debug("Detecting input language...")
        try:
            language = detect_language(user_input, client, detection_model)
        except LLMClientError as e:
            logger.warning("Language detection failed: %s", e)
            return None
        if not language:
            logger.warning("Language detection returned no answer")
            return None
        logger.debug("Language detected: %s", language)
        return language

    return properties.output_language or None


def resolve_model(cli_model: str | None, template_model: str | None, default_model: str) -> ModelSelection:
    """Pick the model: command line, then template, then configured default."""
    if cli_model:
        return ModelSelection(name=cli_model, source="cli")
    if template_model:
        return ModelSelection(name=template_model, source="template")
    return ModelSelection(name=default_model, source="default")
