import os
import json
from pathlib import Path
from dotenv import load_dotenv
from .logging_config import setup_app_logging
import logging

# Load environment variables from .env file
load_dotenv()

# Get the config directory path (where this file is located)
CONFIG_DIR = Path(__file__).parent

PROJECT_ROOT = CONFIG_DIR.parent

# Load configuration from config.json
config_path = CONFIG_DIR / 'config.json'
with open(config_path, 'r', encoding='utf-8') as f:
    CONFIG = json.load(f)

# CONFIG is the in-memory runtime representation of config.json, enriched below with
# derived values (project root, absolute paths, logging settings).
CONFIG['project_root'] = str(PROJECT_ROOT)

# Environment variables
# Provider feature flags and secrets (IOT_*) are not copied here: the provider registry reads
# them from the environment mapping it is given, so tests can pass their own mapping.
ENV = {
    'JWT_SECRET': os.getenv('JWT_SECRET'),
}


def validate_config():
    """Validate that the configuration sections the gateway relies on are present.

    Secrets are optional at import time: a missing JWT_SECRET only disables the staff
    endpoints (they answer 401), and missing vendor secrets leave the matching adapter
    disabled. Structural problems in config.json, on the other hand, are programming errors
    and fail fast.
    """
    required_sections = ['server', 'store', 'iot', 'auth']
    for section in required_sections:
        if section not in CONFIG:
            raise ValueError(f"Missing configuration section: {section}")

    if not CONFIG['auth'].get('staff_roles'):
        raise ValueError("Missing configuration for auth.staff_roles")


# Validate configuration on module import
validate_config()


# --- Helper function to get config value from CONFIG or environment variable ---
def get_config_value(json_keys: list, env_var_name: str, default_value: any = None):
    """
    Retrieves a configuration value.
    Priority:
    1. Environment variable (if env_var_name is provided and variable is set).
    2. Value from CONFIG dictionary (using json_keys).
    3. default_value.
    """
    # Try environment variable first
    if env_var_name:
        env_value = os.getenv(env_var_name)
        if env_value is not None:
            # Attempt to match type of default_value if it's int, float or bool
            if isinstance(default_value, bool):
                if env_value.lower() == 'true': return True
                if env_value.lower() == 'false': return False
            elif isinstance(default_value, int):
                try:
                    return int(env_value)
                except ValueError:
                    pass # Fall through to JSON or default if not a valid int
            elif isinstance(default_value, float):
                try:
                    return float(env_value)
                except ValueError:
                    pass
            return env_value # Return as string if no type match

    # Try from CONFIG dictionary (loaded from JSON)
    current_level = CONFIG
    try:
        for key in json_keys:
            current_level = current_level[key]
        if isinstance(current_level, (str, int, bool, float, list, dict)):
            return current_level
    except (KeyError, TypeError):
        pass # Key not found or CONFIG structure not as expected, fall through to default

    # Fallback to default value
    return default_value


# --- Store path ---
# Relative database paths are resolved against the project root so the service behaves the
# same regardless of the working directory it is started from.
db_path = Path(get_config_value(['store', 'db_path'], 'ACCESS_DB_PATH', 'data/access.sqlite'))
if not db_path.is_absolute():
    db_path = PROJECT_ROOT / db_path
CONFIG['store']['db_path'] = str(db_path)

# --- Reverse proxy ---
# Only behind a proxy that appends the client address may X-Forwarded-For be trusted.
CONFIG['server']['trust_forwarded_for'] = get_config_value(
    ['server', 'trust_forwarded_for'], 'TRUST_FORWARDED_FOR', False
)

# --- Dispatch settings ---
CONFIG['iot']['fallback_to_generic'] = get_config_value(
    ['iot', 'fallback_to_generic'], 'IOT_FALLBACK_TO_GENERIC', True
)
CONFIG['iot']['dispatch_timeout_s'] = float(get_config_value(
    ['iot', 'dispatch_timeout_s'], 'IOT_DISPATCH_TIMEOUT_S', 30.0
))

# --- Logging Configuration ---
# Defaults for logging config are also in logging_config.py's setup_app_logging function's signature
# or can be specified in config.json. Environment variables take precedence.
CONFIG['logging'] = {
    'level': get_config_value(['logging', 'level'], 'LOG_LEVEL', 'INFO'),
    'file_path': get_config_value(['logging', 'file_path'], 'LOG_FILE_PATH', 'logs/gateway.log'),
    'max_bytes': get_config_value(['logging', 'max_bytes'], 'LOG_MAX_BYTES', 5*1024*1024), # 5MB
    'backup_count': get_config_value(['logging', 'backup_count'], 'LOG_BACKUP_COUNT', 3),
    'date_format': get_config_value(
        ['logging', 'date_format'],
        'LOG_DATE_FORMAT',
        '%Y-%m-%dT%H:%M:%S%z'
    )
}

# --- Setup Application Logging ---
setup_app_logging(config=CONFIG.get('logging'))

config_init_logger = logging.getLogger(__name__) # Get logger for this module AFTER logging is setup
config_init_logger.info("[config_init] Logging initialized from config/__init__.py using setup_app_logging.")
