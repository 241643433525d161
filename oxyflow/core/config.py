"""
Configuration management for oxyflow.

Configuration lives in a YAML file with one block per environment::

    default:
      app:
        name: demo
      message:
        is_send_answer: true
    prod:
      app:
        name: demo-prod

``load_config`` reads ``.env`` first, so ``OXYFLOW_CONFIG_PATH``,
``OXYFLOW_CONFIG_ENV`` and ``OXYFLOW_APP_NAME`` can be set there.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .constants import (
    DEFAULT_APP_NAME,
    DEFAULT_EVENT_WAIT_TIMEOUT,
    DEFAULT_LLM_MODEL,
    DEFAULT_MEMORY_MAX_TOKENS,
    DEFAULT_MAX_REACT_ROUNDS,
    DEFAULT_MESSAGE_PREFIX,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_SEMAPHORE_COUNT,
    DEFAULT_SHORT_MEMORY_SIZE,
)
from .exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "OXYFLOW_CONFIG_PATH"
CONFIG_ENV_ENV = "OXYFLOW_CONFIG_ENV"
APP_NAME_ENV = "OXYFLOW_APP_NAME"
DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_CONFIG_ENV = "default"

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass
class AppConfig:
    """Application identity. The name prefixes every store collection."""
    name: str = DEFAULT_APP_NAME
    version: str = "1.0.0"


@dataclass
class AgentDefaults:
    """Defaults applied to agents that do not set these values themselves."""
    llm_model: str = DEFAULT_LLM_MODEL
    prompt: str = ""
    short_memory_size: int = DEFAULT_SHORT_MEMORY_SIZE
    max_react_rounds: int = DEFAULT_MAX_REACT_ROUNDS
    memory_max_tokens: int = DEFAULT_MEMORY_MAX_TOKENS


@dataclass
class MessageConfig:
    """Switches for notifications sent to the message queue."""
    is_send_tool_call: bool = True
    is_send_observation: bool = True
    is_send_answer: bool = True
    is_send_think: bool = True
    is_stored: bool = True
    show_in_terminal: bool = False
    message_prefix: str = DEFAULT_MESSAGE_PREFIX


@dataclass
class ExecutionConfig:
    """Defaults for the per-component execution pipeline."""
    semaphore_count: int = DEFAULT_SEMAPHORE_COUNT
    retries: int = DEFAULT_RETRIES
    delay: float = DEFAULT_RETRY_DELAY
    event_wait_timeout: float = DEFAULT_EVENT_WAIT_TIMEOUT


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"


@dataclass
class OxyflowConfig:
    """Main oxyflow configuration."""
    app: AppConfig = field(default_factory=AppConfig)
    agent: AgentDefaults = field(default_factory=AgentDefaults)
    message: MessageConfig = field(default_factory=MessageConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def app_name(self) -> str:
        return self.app.name

    @classmethod
    def from_yaml(
        cls,
        yaml_path: Union[str, Path],
        env: str = DEFAULT_CONFIG_ENV
    ) -> 'OxyflowConfig':
        """
        Load configuration for one environment from a YAML file.

        Args:
            yaml_path: Path to the YAML file
            env: Name of the environment block to read

        Raises:
            ConfigurationError: If the file is missing, unparsable or lacks
                the requested environment block
        """
        yaml_path = Path(yaml_path)

        if not yaml_path.exists():
            raise ConfigurationError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {str(e)}")

        if not data:
            raise ConfigurationError("Empty configuration file")

        if env not in data:
            raise ConfigurationError(
                f"Environment '{env}' not found in {yaml_path}. "
                f"Available: {sorted(data.keys())}"
            )

        logger.info(f"Loaded configuration from {yaml_path} (env: {env})")
        return cls.from_dict(data[env] or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OxyflowConfig':
        """Create configuration from dictionary."""
        try:
            return cls(
                app=_build(AppConfig, data.get('app')),
                agent=_build(AgentDefaults, data.get('agent')),
                message=_build(MessageConfig, data.get('message')),
                execution=_build(ExecutionConfig, data.get('execution')),
                log=_build(LogConfig, data.get('log')),
            )
        except (TypeError, AttributeError) as e:
            raise ConfigurationError(f"Error parsing configuration: {str(e)}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            ValidationError: Listing every invalid setting
        """
        errors = []

        if not self.app.name:
            errors.append("app.name must not be empty")

        if self.execution.semaphore_count <= 0:
            errors.append("execution.semaphore_count must be positive")
        if self.execution.retries < 1:
            errors.append("execution.retries must be at least 1")
        if self.execution.delay < 0:
            errors.append("execution.delay cannot be negative")
        if self.execution.event_wait_timeout < 0:
            errors.append("execution.event_wait_timeout cannot be negative")

        if self.agent.short_memory_size <= 0:
            errors.append("agent.short_memory_size must be positive")
        if self.agent.max_react_rounds < 0:
            errors.append("agent.max_react_rounds cannot be negative")
        if self.agent.memory_max_tokens <= 0:
            errors.append("agent.memory_max_tokens must be positive")

        if self.log.level.upper() not in _LOG_LEVELS:
            errors.append(f"log.level '{self.log.level}' is not a valid logging level")

        if errors:
            raise ValidationError(
                "Configuration validation failed:\n" + "\n".join(f"- {e}" for e in errors)
            )


def _build(section_cls, section_data: Optional[Dict[str, Any]]):
    """Build one config section, ignoring unknown keys with a warning."""
    if not section_data:
        return section_cls()
    known = {f.name for f in fields(section_cls)}
    unknown = set(section_data) - known
    if unknown:
        logger.warning(f"Ignoring unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**{k: v for k, v in section_data.items() if k in known})


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    env: Optional[str] = None
) -> OxyflowConfig:
    """
    Load configuration, falling back to defaults when no file exists.

    Args:
        config_path: YAML path; defaults to ``$OXYFLOW_CONFIG_PATH`` or config.yaml
        env: Environment block; defaults to ``$OXYFLOW_CONFIG_ENV`` or "default"
    """
    load_dotenv()

    path = Path(config_path or os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))
    env = env or os.getenv(CONFIG_ENV_ENV, DEFAULT_CONFIG_ENV)

    if path.exists():
        config = OxyflowConfig.from_yaml(path, env)
    else:
        logger.warning(f"Configuration file {path} not found, using default configuration")
        config = OxyflowConfig()

    app_name = os.getenv(APP_NAME_ENV)
    if app_name:
        config.app.name = app_name

    config.validate()
    return config


def save_config(
    config: OxyflowConfig,
    config_path: Union[str, Path],
    env: str = DEFAULT_CONFIG_ENV
) -> None:
    """Save configuration under one environment block."""
    config_path = Path(config_path)

    with open(config_path, 'w') as f:
        yaml.dump({env: config.to_dict()}, f, default_flow_style=False, sort_keys=False)
