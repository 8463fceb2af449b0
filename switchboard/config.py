"""
Switchboard settings.

One YAML document (config.yaml) holds the server, storage, generation and
provider sections. It is parsed once and cached; the gateway, the HTTP app
and the CLI all read the same dict through get_config().

Provider keys are never written into the file itself. String values may
reference the environment as ${NAME} or ${NAME:-fallback}; a .env file next
to the process is loaded first so local keys work without exporting them.

Lookup order for the file: explicit path, $SWITCHBOARD_CONFIG, then
config.yaml at the repository root.
"""

import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")

_config: dict | None = None


def expand_env(value):
    """Substitute ${NAME} / ${NAME:-fallback} in every string of a YAML tree."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1)) or (m.group(2) or ""), value)
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def config_path(path: Path | str | None = None) -> Path:
    return Path(path or os.environ.get("SWITCHBOARD_CONFIG") or DEFAULT_CONFIG_PATH)


def load_config(path: Path | str | None = None) -> dict:
    """
    Parse the settings file and cache the result.
    An explicit path always re-reads; otherwise the cached dict is returned.
    """
    global _config
    if _config is not None and path is None:
        return _config

    source = config_path(path)
    if not source.exists():
        raise FileNotFoundError(f"Config not found: {source}")

    with open(source, encoding="utf-8") as f:
        settings = yaml.safe_load(f) or {}

    _config = expand_env(settings)
    return _config


def get_config() -> dict:
    return _config if _config is not None else load_config()


def reset_config() -> None:
    """Forget the cached settings; the next get_config() reads the file again."""
    global _config
    _config = None
