"""Agent settings from environment variables and the YAML config loader."""
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings

from .exceptions import ConfigError
from .schemas import AgentConfig

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    # Path to the YAML file with hosts and monitors
    config_path: str = "uptime-robot.yml"

    # Enable debug output (might include sensitive data!)
    verbose: bool = False

    # Timeout for status pushes to the uptime host
    push_timeout_seconds: int = 30

    class Config:
        env_prefix = "UPTIME_AGENT_"
        case_sensitive = False


settings = Settings()


def load_config(path: str) -> AgentConfig:
    """Read and validate the YAML config at path.

    Raises ConfigError if the file cannot be read, is not valid YAML or
    does not match the expected schema.
    """
    config_file = Path(path)
    logger.info(f"Parsing config at: {config_file}")

    try:
        raw = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Error reading config: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing config: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Error parsing config: top level must be a mapping")

    try:
        return AgentConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config: {e}") from e
