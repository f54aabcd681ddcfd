"""
Configuration management for the ohmage pipeline
"""

import yaml
import os
import re
from pathlib import Path
from typing import Dict, Any, List, Optional
from dotenv import load_dotenv

def get_project_root() -> Path:
    """Get the project root directory"""
    return Path(__file__).parent.parent

def _substitute_env_vars(text: str) -> str:
    """
    Substitute environment variables in text using ${VAR} syntax

    Args:
        text: Text containing ${VAR} patterns

    Returns:
        Text with environment variables substituted
    """
    if not isinstance(text, str):
        return text

    # Pattern to match ${VAR} or ${VAR:default}
    pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

    def replace_match(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ''
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_match, text)

def _process_config_values(config: Any) -> Any:
    """Recursively substitute environment variables in config values"""
    if isinstance(config, dict):
        return {key: _process_config_values(value) for key, value in config.items()}
    elif isinstance(config, list):
        return [_process_config_values(item) for item in config]
    elif isinstance(config, str):
        return _substitute_env_vars(config)
    else:
        return config

def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from config.yml and environment variables

    Args:
        config_path: Optional path to config file

    Returns:
        Configuration dictionary
    """
    load_dotenv()

    if config_path is None:
        config_path = get_project_root() / "config.yml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    config = _process_config_values(config)
    _override_with_env_vars(config)

    return config

def _override_with_env_vars(config: Dict[str, Any]) -> None:
    """Override config values with environment variables"""

    def parse_bool(value, default):
        if value is None or value == '':
            return default
        return str(value).strip().lower() in {'1', 'true', 'yes', 'y', 'on'}

    config.setdefault('logging', {})
    if os.getenv('OHMAGE_LOG_LEVEL'):
        config['logging']['level'] = os.getenv('OHMAGE_LOG_LEVEL')

    validation = config.setdefault('validation', {})
    # YAML may hand back a substituted string, so normalize to a real bool
    validation['best_effort'] = parse_bool(
        os.getenv('OHMAGE_BEST_EFFORT'),
        parse_bool(validation.get('best_effort'), True)
    )
    if os.getenv('OHMAGE_ERROR_DIR'):
        validation['error_directory'] = os.getenv('OHMAGE_ERROR_DIR')

    output = config.setdefault('output', {})
    if os.getenv('OHMAGE_CSV_LIST_DELIMITER'):
        output['csv_list_delimiter'] = os.getenv('OHMAGE_CSV_LIST_DELIMITER')

    config['environment'] = os.getenv('ENVIRONMENT', config.get('environment', 'development'))

def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration for required fields

    Args:
        config: Configuration dictionary

    Returns:
        True if valid, raises ValueError if invalid
    """
    required_fields = [
        'project.name',
        'output.column_catalog',
    ]

    for field in required_fields:
        keys = field.split('.')
        value = config

        try:
            for key in keys:
                value = value[key]

            if not value:
                raise ValueError(f"Required configuration field '{field}' is empty")

        except (KeyError, TypeError):
            raise ValueError(f"Required configuration field '{field}' is missing")

    return True

def get_column_catalog(config: Dict[str, Any]) -> List[str]:
    """Return the declared output column catalog, in order"""
    return list(config.get('output', {}).get('column_catalog', []))
