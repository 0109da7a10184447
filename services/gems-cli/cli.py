"""Command-line entry point for the gems prompt tool.

    gems [-m model] [-t template] [-v] [-c config] [--list-templates]
         [--list-models] [--template-info name] [text ...]
"""

import argparse
import atexit
import logging
import signal
import sys
from typing import TextIO

from config import ConfigError, find_config_file, load_document, settings_from_document
from desktop import SystemClipboard
from display import create_sink
from llm_client import LLMClient, LLMClientError
from pipeline import PromptRunner
from properties import encode_properties, schema_to_text
from templates import TemplateNotFound, TemplateRegistry, registry_from_document

logger = logging.getLogger(__name__)

EXAMPLES = """\
examples:
  gems 'Fix this sentence: Me and him went to store'
  gems -t CodeReview 'function foo() { return x + y; }'
  gems -m gemma3:4b-it-qat -t Summarize 'Long text to summarize...'
  echo 'Hello world' | gems -t Summarize
  gems --list-models
"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gems",
        description="Run text through a prompt template on a local LLM.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-m", "--model", help="LLM model (overrides template and configured default)")
    parser.add_argument("-t", "--template", help="prompt template to use")
    parser.add_argument("-v", "--verbose", action="store_true", help="show debug information")
    parser.add_argument("-c", "--config", help="path to an alternate gems.yml")
    parser.add_argument("--list-models", action="store_true", help="list models available from the API")
    parser.add_argument("--list-templates", action="store_true", help="list templates with descriptions")
    parser.add_argument("--template-info", metavar="NAME", help="show details of one template")
    parser.add_argument("text", nargs="*", help="input text (read from stdin when omitted)")
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    # httpx logs every request at INFO/DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def read_input(words: list[str], stdin: TextIO | None = None) -> str:
    """Positional words joined by spaces, else piped stdin."""
    if words:
        return " ".join(words)
    if stdin is not None and not stdin.isatty():
        return stdin.read().strip()
    return ""


def format_template_list(registry: TemplateRegistry) -> str:
    lines = ["Available Prompt Templates:", "==========================", ""]
    for name in registry.names():
        lines.append(f"📋 {name}")
        lines.append(f"   {registry.describe(name)}")
        props = registry.properties(name)
        if not props.is_empty():
            lines.append(f"   Properties: {encode_properties(props)}")
        lines.append("")
    lines.append('Usage: gems -t <template_name> "your text here"')
    lines.append("For detailed template info: gems --template-info <template_name>")
    return "\n".join(lines)


def format_template_info(registry: TemplateRegistry, name: str) -> str:
    template = registry.get(name)
    props = registry.properties(name)

    lines = [
        f"Template Information: {name}",
        "======================================",
        "",
        "Template Content:",
        "-----------------",
        template.body.rstrip("\n"),
        "",
    ]
    if props.is_empty():
        lines += ["Properties: None", ""]
    else:
        lines += ["Properties:", "-----------"]
        if props.detect_language:
            lines.append("• Language Detection: true")
        if props.output_language:
            lines.append(f"• Output Language: {props.output_language}")
        if props.json_schema is not None:
            lines.append(f"• JSON Schema: {schema_to_text(props.json_schema)}")
        if props.json_field:
            lines.append(f"• JSON Field Extraction: {props.json_field}")
        if props.model:
            lines.append(f"• Model: {props.model}")
        lines.append("")

    lines += [
        "Usage Example:",
        "--------------",
        f'gems -t {name} "your input text here"',
        f'gems -m your_model -t {name} "your input text here"',
    ]
    return "\n".join(lines)


def list_models(client: LLMClient, base_url: str) -> int:
    print("Available models from API:")
    try:
        models = client.list_models()
    except LLMClientError as e:
        logger.debug("Model listing failed: %s", e)
        print("  Unable to retrieve model list. Check if your LLM service is running and accessible.")
        print(f"  API endpoint: {base_url}")
        return 1
    for model in models:
        print(f"  - {model}")
    return 0


def _install_signal_handlers(cleanup) -> None:
    def _handler(signum, frame):
        cleanup()
        raise SystemExit(128 + signum)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        config_path = find_config_file(args.config)
        document = load_document(config_path)
        settings = settings_from_document(document, source=str(config_path))
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.list_models:
        client = LLMClient.from_settings(settings)
        try:
            return list_models(client, settings.api_base_url)
        finally:
            client.close()

    try:
        registry = registry_from_document(document, source=str(config_path))
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if args.list_templates:
        print(format_template_list(registry))
        return 0

    if args.template_info:
        try:
            print(format_template_info(registry, args.template_info))
        except TemplateNotFound as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0

    user_input = read_input(args.text, sys.stdin)
    if not user_input:
        print("Error: No input provided. Please provide text to process.", file=sys.stderr)
        print("Use -h for help information.", file=sys.stderr)
        return 1

    template_name = args.template or settings.default_prompt_template
    if template_name not in registry:
        print(f"Error: {TemplateNotFound(template_name, registry.names())}", file=sys.stderr)
        return 1

    logger.debug("Using API: %s", settings.api_base_url)
    logger.debug("Selected template: %s", template_name)

    client = LLMClient.from_settings(settings)
    sink = create_sink(settings.result_viewer_app)
    atexit.register(sink.cleanup)
    _install_signal_handlers(sink.cleanup)

    runner = PromptRunner(
        settings=settings,
        registry=registry,
        client=client,
        sink=sink,
        clipboard=SystemClipboard(),
        verbose=args.verbose,
    )

    try:
        runner.run(template_name, user_input, cli_model=args.model)
    except LLMClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    finally:
        sink.cleanup()
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
