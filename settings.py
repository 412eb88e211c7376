"""
Run settings: defaults, optional YAML config file, environment variables and CLI flags.
Precedence (highest first): CLI flag, environment variable, config file, default.
"""
import os
from typing import Any, Callable, Dict, Mapping, Optional

import yaml

from errors import ConfigError

DEFAULTS: Dict[str, Any] = {
    'repo': '.',
    'from_rev': None,
    'to_rev': None,
    'jira_base_url': '',
    'jira_prefix': '',
    'jira_token': None,
    'out_file': '',
    'format': 'text',
    'cache': '',
    'cache_max_age': None,
    'max_workers': 4,
    'lookup_timeout': 10.0,
    'max_retries': None,
    'backoff_base': None,
    'backoff_jitter': None,
    'max_backoff': None,
}

# settings that may come from the environment
ENV_VARS: Dict[str, str] = {
    'jira_base_url': 'CHANGELOG_JIRA_BASE_URL',
    'jira_prefix': 'CHANGELOG_JIRA_PREFIX',
    'jira_token': 'JIRA_TOKEN',
    'cache': 'CHANGELOG_CACHE',
    'max_workers': 'CHANGELOG_MAX_WORKERS',
    'lookup_timeout': 'CHANGELOG_LOOKUP_TIMEOUT',
    'max_retries': 'CHANGELOG_MAX_RETRIES',
    'backoff_base': 'CHANGELOG_BACKOFF_BASE',
    'backoff_jitter': 'CHANGELOG_BACKOFF_JITTER',
    'max_backoff': 'CHANGELOG_MAX_BACKOFF',
}

_CASTS: Dict[str, Callable[[Any], Any]] = {
    'max_workers': int,
    'lookup_timeout': float,
    'cache_max_age': float,
    'max_retries': int,
    'backoff_base': float,
    'backoff_jitter': float,
    'max_backoff': float,
}

# friendlier spellings accepted in config files
_FILE_ALIASES = {'from': 'from_rev', 'to': 'to_rev', 'output': 'out_file', 'prefixes': 'jira_prefix'}


def load_settings(path: Optional[str]) -> Dict[str, Any]:
    """Load a YAML mapping of settings. Unknown keys are rejected so typos do not pass silently."""
    if not path:
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping, got {type(data).__name__}")
    settings = {}
    for raw_key, value in data.items():
        key = _FILE_ALIASES.get(str(raw_key).replace('-', '_'), str(raw_key).replace('-', '_'))
        if key not in DEFAULTS:
            raise ConfigError(f"unknown setting '{raw_key}' in {path}")
        settings[key] = value
    return settings


def _cast(key: str, value: Any, source: str) -> Any:
    if value is None or value == '':
        return value
    cast = _CASTS.get(key)
    if cast is None:
        return str(value) if not isinstance(value, str) else value
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value for {key} from {source}: {value!r}") from exc


def resolve_settings(cli_values: Mapping[str, Any], env: Mapping[str, str] = None, file_values: Mapping[str, Any] = None) -> Dict[str, Any]:
    """Merge the layers into one settings dict. CLI values of None mean 'not given'."""
    env = os.environ if env is None else env
    file_values = file_values or {}
    resolved: Dict[str, Any] = {}
    for key, default in DEFAULTS.items():
        value = default
        if file_values.get(key) is not None:
            value = _cast(key, file_values[key], 'config file')
        env_name = ENV_VARS.get(key)
        if env_name and env.get(env_name):
            value = _cast(key, env[env_name], env_name)
        if cli_values.get(key) is not None:
            value = _cast(key, cli_values[key], 'command line')
        resolved[key] = value
    if resolved['max_workers'] is not None and resolved['max_workers'] < 1:
        raise ConfigError(f"max_workers must be at least 1, got {resolved['max_workers']}")
    if resolved['lookup_timeout'] is not None and resolved['lookup_timeout'] <= 0:
        raise ConfigError(f"lookup_timeout must be positive, got {resolved['lookup_timeout']}")
    return resolved
