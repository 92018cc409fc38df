"""
Configuration for the meeting automator.

Settings come from environment variables (a .env file is loaded first), with
config.yaml as an optional base layer. Environment values win. Validation
collects every problem at once so a misconfigured install fails fast with a
single readable error.
"""

import logging
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from granola_client import default_granola_dir

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = 'AUTOMATOR_CONFIG'
DEFAULT_CONFIG_FILE = 'config.yaml'

_EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'


class ConfigError(ValueError):
    def __init__(self, problems: list[str]):
        self.problems = problems
        lines = '\n'.join(f"  {p}" for p in problems)
        super().__init__(f"Missing or invalid configuration:\n{lines}")


class Config(BaseModel):
    """Validated settings. Non-finite numbers are rejected along with out-of-range ones."""

    model_config = ConfigDict(allow_inf_nan=False, str_strip_whitespace=True)

    anthropic_api_key: str = Field(min_length=1)
    jira_base_url: str = Field(min_length=1)
    jira_email: str = Field(pattern=_EMAIL_PATTERN)
    jira_api_token: str = Field(min_length=1)
    jira_pod: str = Field(min_length=1)
    jira_project_key: str = Field(default='ENG', min_length=1)
    slack_bot_token: str = Field(pattern=r'^xoxb-')
    slack_channel_id: str = Field(min_length=1)
    granola_data_dir: Path = Field(default_factory=default_granola_dir)
    delay_after_meeting_minutes: float = Field(default=5, ge=1)
    calendar_refresh_minutes: float = Field(default=30, ge=5)
    state_file: Path | None = None
    late_fire_floor_seconds: float = Field(default=30, ge=0)
    retry_delay_seconds: float = Field(default=120, ge=0)
    max_retries: int = Field(default=1, ge=0)
    candidate_limit: int = Field(default=20, ge=1)
    server_host: str = '127.0.0.1'
    server_port: int = Field(default=9877, ge=1, le=65535)
    anthropic_model: str = 'claude-sonnet-4-20250514'

    @field_validator('jira_base_url')
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(('http://', 'https://')):
            raise ValueError(f"invalid url {value!r}")
        return value.rstrip('/')

    @field_validator('granola_data_dir', 'state_file')
    @classmethod
    def _expand_user(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @property
    def delay_after_meeting_seconds(self) -> float:
        return self.delay_after_meeting_minutes * 60

    @property
    def calendar_refresh_seconds(self) -> float:
        return self.calendar_refresh_minutes * 60


# field name -> (environment variable or None, YAML key path)
SETTINGS = {
    'anthropic_api_key': ('ANTHROPIC_API_KEY', ['anthropic', 'api_key']),
    'jira_base_url': ('JIRA_BASE_URL', ['jira', 'base_url']),
    'jira_email': ('JIRA_EMAIL', ['jira', 'email']),
    'jira_api_token': ('JIRA_API_TOKEN', ['jira', 'api_token']),
    'jira_pod': ('JIRA_POD', ['jira', 'pod']),
    'jira_project_key': ('JIRA_PROJECT_KEY', ['jira', 'project_key']),
    'slack_bot_token': ('SLACK_BOT_TOKEN', ['slack', 'bot_token']),
    'slack_channel_id': ('SLACK_CHANNEL_ID', ['slack', 'channel_id']),
    'granola_data_dir': ('GRANOLA_DATA_DIR', ['granola', 'data_dir']),
    'state_file': ('AUTOMATOR_STATE_FILE', ['state', 'path']),
    'delay_after_meeting_minutes': ('DELAY_AFTER_MEETING_MINUTES', ['scheduler', 'delay_after_meeting_minutes']),
    'calendar_refresh_minutes': ('CALENDAR_REFRESH_MINUTES', ['scheduler', 'calendar_refresh_minutes']),
    'late_fire_floor_seconds': (None, ['scheduler', 'late_fire_floor_seconds']),
    'retry_delay_seconds': (None, ['scheduler', 'retry_delay_seconds']),
    'max_retries': (None, ['scheduler', 'max_retries']),
    'candidate_limit': (None, ['scheduler', 'candidate_limit']),
    'server_host': (None, ['server', 'host']),
    'server_port': (None, ['server', 'port']),
    'anthropic_model': (None, ['anthropic', 'model']),
}


def load_yaml_config(config_path: str | None = None) -> dict:
    """Load config.yaml if present. A missing file is an empty config."""
    path = Path(config_path or os.getenv(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE))
    if not path.exists():
        logger.debug(f"No configuration file at {path}; using environment only")
        return {}
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def _get_nested(config: dict, keys: list[str], default=None):
    current = config
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def _setting_name(field_name: str) -> str:
    env_name, yaml_keys = SETTINGS[field_name]
    return env_name or '.'.join(yaml_keys)


def _describe(error: dict) -> str:
    name = _setting_name(str(error['loc'][0])) if error['loc'] else 'config'
    if error['type'] == 'missing':
        return f"{name}: required"
    return f"{name}: {error['msg']}"


def build_config(env: dict, file_config: dict | None = None) -> Config:
    """Validate settings from an environment mapping layered over a YAML dict."""
    file_config = file_config or {}
    raw = {}
    for field_name, (env_name, yaml_keys) in SETTINGS.items():
        value = env.get(env_name) if env_name else None
        if value is None or value == '':
            value = _get_nested(file_config, yaml_keys)
        if isinstance(value, str) and not value.strip():
            value = None
        if value is not None:
            raw[field_name] = value

    try:
        return Config.model_validate(raw)
    except ValidationError as e:
        raise ConfigError([_describe(err) for err in e.errors()]) from e


def load_config(config_path: str | None = None) -> Config:
    """Load .env, then config.yaml, then validate against the process environment."""
    load_dotenv()
    return build_config(dict(os.environ), load_yaml_config(config_path))
