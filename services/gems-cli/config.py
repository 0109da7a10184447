"""YAML-based configuration for the gems prompt tool.

Settings come from the ``configuration`` section of ``gems.yml``. Environment
variables prefixed with ``GEMS_`` (e.g. ``GEMS_API_KEY``) take precedence over
the file.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "gems.yml"
CONFIG_SEARCH_DIRS = (
    Path.cwd,
    lambda: Path.home() / ".config" / "gems",
    lambda: Path(__file__).resolve().parent,
)


class ConfigError(Exception):
    """Configuration is missing, unreadable or incomplete (fatal)."""

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []

    def __str__(self) -> str:
        if not self.problems:
            return self.args[0]
        return "\n".join([self.args[0], *(f"  - {p}" for p in self.problems)])


class Settings(BaseSettings):
    """Tool settings, loaded from the YAML ``configuration`` section."""

    # API
    api_base_url: str
    api_key: str = ""
    api_timeout: int
    api_connect_timeout: int = 10
    api_retry_attempts: int = 1
    api_retry_delay: float = 1.0
    api_retry_backoff: float = 2.0
    reasoning_effort: str = ""

    # Models and templates
    default_model: str
    language_detection_model: str
    default_prompt_template: str

    # Output
    result_viewer_app: str = ""

    model_config = {"env_prefix": "GEMS_", "case_sensitive": False, "extra": "ignore"}

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats the YAML values passed in as init kwargs
        return env_settings, init_settings


def resolve_config_path(directory: Path | str, preferred: str = DEFAULT_CONFIG_FILE) -> Path | None:
    """Find the config file in ``directory``.

    Tries the preferred name, then its .yml/.yaml variants, then gems.yml and
    gems.yaml. Returns None when nothing matches.
    """
    if not directory:
        return None
    directory = Path(directory)

    candidates = []
    if preferred:
        stem = Path(preferred).stem
        candidates += [preferred, f"{stem}.yml", f"{stem}.yaml"]
    candidates += ["gems.yml", "gems.yaml"]

    for name in candidates:
        path = directory / name
        if path.is_file():
            return path
    return None


def find_config_file(explicit: str | None = None) -> Path:
    """Locate the config file: an explicit path, else the standard search dirs."""
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
        return path

    for search_dir in CONFIG_SEARCH_DIRS:
        directory = search_dir()
        path = resolve_config_path(directory)
        if path is not None:
            logger.debug("Using configuration file: %s", path)
            return path

    raise ConfigError(
        "Configuration file not found. "
        "Please ensure gems.yml or gems.yaml exists in the current directory or ~/.config/gems."
    )


def load_document(path: Path | str) -> dict[str, Any]:
    """Read and parse the YAML document. Raises ConfigError if unreadable."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping at the top level")
    return document


def settings_from_document(document: dict[str, Any], source: str = "configuration") -> Settings:
    """Build Settings from the parsed document, reporting every missing field."""
    section = document.get("configuration") or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'configuration' section in {source} must be a mapping")

    # Empty values count as missing for required fields
    values = {k: v for k, v in section.items() if v is not None and v != ""}

    try:
        settings = Settings(**values)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            field = ".".join(str(p) for p in err["loc"])
            if err["type"] == "missing":
                problems.append(f"{field} not found in {source}")
            else:
                problems.append(f"{field}: {err['msg']}")
        raise ConfigError("Failed to load configuration", problems) from e

    logger.debug("Configuration loaded successfully")
    logger.debug("API Base URL: %s", settings.api_base_url)
    logger.debug("Default Model: %s", settings.default_model)
    logger.debug("Language Detection Model: %s", settings.language_detection_model)
    logger.debug("API Timeout: %s", settings.api_timeout)
    logger.debug("Reasoning Effort: %s", settings.reasoning_effort)
    return settings


def load_settings(path: Path | str) -> Settings:
    logger.debug("Loading configuration from YAML file: %s", path)
    return settings_from_document(load_document(path), source=str(path))
