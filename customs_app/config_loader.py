# customs_app/config_loader.py
import os
import json
import logging

# --- Global Variables ---
# AUTOMATION_SETTINGS holds the defaults the declaration pipeline runs with,
# loaded from defaults, then `automation_settings.json`, then the environment.
AUTOMATION_SETTINGS = {}

DEFAULT_PORTAL_URL = "https://ecd.beacukai.go.id/"

DEVELOPMENT_ENVIRONMENTS = {"development", "dev", "test", "testing"}

ENV_OVERRIDES = {
    # env var -> (settings key, parser)
    "CUSTOMS_APP_ENV": ("app_env", "str"),
    "CUSTOMS_FORM_URL": ("form_url", "str"),
    "CUSTOMS_FALLBACK_URL": ("fallback_url", "str"),
    "CUSTOMS_AUTOMATION_TIMEOUT_MS": ("timeout_ms", "int"),
    "CUSTOMS_AUTOMATION_RETRIES": ("retries", "int"),
    "CUSTOMS_AUTOMATION_HEADLESS": ("headless", "bool"),
    "CHROMEDRIVER_PATH": ("webdriver_path", "str"),
    "SQUARE_WEBHOOK_SIGNATURE_KEY": ("webhook_signature_key", "str"),
}


def _parse_bool(raw_value):
    return str(raw_value).strip().lower() in ['true', '1', 't', 'yes', 'y']


def _default_headless(app_env):
    # Production always runs without a visible browser; elsewhere DEBUG_AUTOMATION=true shows it.
    if app_env == "production":
        return True
    return not _parse_bool(os.environ.get("DEBUG_AUTOMATION", "false"))


def default_settings():
    app_env = os.environ.get("CUSTOMS_APP_ENV", "production").strip().lower()
    return {
        "app_env": app_env,
        "form_url": DEFAULT_PORTAL_URL,
        "fallback_url": DEFAULT_PORTAL_URL,
        "timeout_ms": 45000,
        "retries": 3,
        "headless": _default_headless(app_env),
        "webdriver_path": None,
        "webhook_signature_key": None,
    }


def _apply_env_overrides(settings):
    for env_var, (key, parser) in ENV_OVERRIDES.items():
        raw_value = os.environ.get(env_var)
        if raw_value is None or raw_value.strip() == "":
            continue
        if parser == "int":
            try:
                value = int(raw_value)
            except ValueError:
                logging.warning(f"Config: {env_var}={raw_value!r} is not an integer. Keeping {settings[key]!r}.")
                continue
            if value < 0:
                logging.warning(f"Config: {env_var} must not be negative. Keeping {settings[key]!r}.")
                continue
            settings[key] = value
        elif parser == "bool":
            settings[key] = _parse_bool(raw_value)
        else:
            settings[key] = raw_value.strip()
    settings["app_env"] = str(settings["app_env"]).lower()
    return settings


# --- Load Automation Configuration ---
def load_automation_config(config_path=None):
    global AUTOMATION_SETTINGS
    if config_path is None:
        config_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'automation_settings.json')

    settings = default_settings()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            file_settings = json.load(f)
        if isinstance(file_settings, dict):
            unknown_keys = set(file_settings) - set(settings)
            if unknown_keys:
                logging.warning(f"Config: Ignoring unknown keys in {config_path}: {sorted(unknown_keys)}")
            settings.update({k: v for k, v in file_settings.items() if k in settings})
            logging.info(f"Config: Loaded automation settings from {config_path}")
        else:
            logging.warning(f"Config: {config_path} does not contain a JSON object. Using defaults.")
    except FileNotFoundError:
        logging.debug(f"Config: {config_path} not found. Using defaults and environment only.")
    except json.JSONDecodeError:
        logging.error(f"Config: Could not decode JSON from {config_path}. Using defaults and environment only.")

    AUTOMATION_SETTINGS = _apply_env_overrides(settings)
    return AUTOMATION_SETTINGS


def is_development(settings=None):
    settings = settings if settings is not None else AUTOMATION_SETTINGS
    return settings.get("app_env", "production") in DEVELOPMENT_ENVIRONMENTS


load_automation_config() # Load configuration when module is loaded
