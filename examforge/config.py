"""
Configuration loading for ExamForge.

Reads config.yaml, layers it over the built-in defaults, loads .env, and
applies EXAMFORGE_* environment overrides. A missing config file is not an
error: the defaults are complete on their own.
"""

import copy
import logging
import os
import random
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"

DEFAULTS: Dict[str, Any] = {
    "engine": {"seed": None},
    "runtime": {"suspend_key": "cmi.suspend_data", "log_writes": True},
    "webhook": {"enabled": True, "timeout": 10},
    "paths": {"output_dir": "output"},
    "package": {"filename_template": "{title}_scorm.zip"},
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
    },
    "server": {"host": "127.0.0.1", "port": 5000, "test_file": None, "max_tracked_attempts": 100},
}

# env var -> (section, key, converter)
ENV_OVERRIDES = {
    "EXAMFORGE_LOG_LEVEL": ("logging", "level", str),
    "EXAMFORGE_SEED": ("engine", "seed", int),
    "EXAMFORGE_WEBHOOK_TIMEOUT": ("webhook", "timeout", float),
    "EXAMFORGE_OUTPUT_DIR": ("paths", "output_dir", str),
    "EXAMFORGE_TEST_FILE": ("server", "test_file", str),
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Load the application config.

    Args:
        path: Path to the YAML file (default: config.yaml in the working dir).
        env: Environment mapping, defaults to os.environ after loading .env.

    Returns:
        Config dict with every default section present.
    """
    config = copy.deepcopy(DEFAULTS)

    path = path or DEFAULT_CONFIG_PATH
    if os.path.exists(path):
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            logger.warning("Ignoring %s: top level is not a mapping", path)
        else:
            _merge(config, loaded)
    else:
        logger.debug("No config file at %s, using defaults", path)

    if env is None:
        load_dotenv()
        env = os.environ

    for var, (section, key, convert) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw in (None, ""):
            continue
        try:
            config[section][key] = convert(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: not a valid %s", var, raw, convert.__name__)

    return config


def configure_logging(config: Dict[str, Any]) -> None:
    """Set the root log level and format from the logging section."""
    log_cfg = config.get("logging", {})
    level = str(log_cfg.get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=log_cfg.get("format", DEFAULTS["logging"]["format"]),
        force=True,
    )


def make_rng(config: Dict[str, Any]) -> Optional[random.Random]:
    """A seeded Random when engine.seed is set, otherwise None (module RNG)."""
    seed = config.get("engine", {}).get("seed")
    if seed is None:
        return None
    logger.info("Using fixed variant seed %s", seed)
    return random.Random(seed)


def webhook_settings(config: Dict[str, Any], test_url: Optional[str]):
    """Resolve (url, timeout) for the result webhook. url is "" when disabled."""
    hook = config.get("webhook", {})
    url = test_url if hook.get("enabled", True) else ""
    return url or "", float(hook.get("timeout", 10))
