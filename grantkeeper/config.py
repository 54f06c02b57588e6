import hashlib
import os
import re
from dataclasses import dataclass
from typing import Any, Dict

import yaml

from grantkeeper.errors import ValidationError

DEFAULT_CONFIG_PATH = "config/grantkeeper.yaml"

_ENV_PATTERN = re.compile(r'\$\{([A-Z0-9_]+)\}')


@dataclass
class Config:
    """Parsed deployment config plus a SHA256 of the expanded file for audit."""
    data: Dict[str, Any]
    config_hash: str

    @property
    def providers(self) -> Dict[str, Any]:
        return self.data.get("providers") or {}

    @property
    def settings(self) -> Dict[str, Any]:
        return self.data.get("settings") or {}


def expand_env_vars(raw_yaml: str) -> str:
    """
    Replaces ${VAR_NAME} with the value from os.environ.
    Raises an error if the variable is missing to prevent running half-configured.
    """
    def replace(match):
        var_name = match.group(1)
        val = os.environ.get(var_name)
        if not val or not val.strip():
            # Fail Fast: Do not run with missing config
            raise ValidationError(
                f"CRITICAL: Config references ${{{var_name}}}, but environment variable is missing."
            )
        if var_name.endswith("IDENTITY_STORE_ID") and not val.startswith("d-"):
            raise ValidationError(f"Invalid Identity Store ID for {var_name}: {val}. Expected 'd-xxxxxxxxxx'")
        return val

    return _ENV_PATTERN.sub(replace, raw_yaml)


def parse_config(raw_content: str) -> Config:
    content = expand_env_vars(raw_content)
    config_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()
    data = yaml.safe_load(content) or {}
    if not isinstance(data, dict):
        raise ValidationError("config file must contain a mapping at the top level")
    return Config(data=data, config_hash=config_hash)


def load_config(path: str = None) -> Config:
    """
    Loads the deployment config. The path defaults to $GRANTKEEPER_CONFIG_PATH,
    then to config/grantkeeper.yaml.
    """
    path = path or os.environ.get("GRANTKEEPER_CONFIG_PATH", DEFAULT_CONFIG_PATH)
    with open(path, "r") as file:
        return parse_config(file.read())
