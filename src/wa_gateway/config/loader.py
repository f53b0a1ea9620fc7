"""
Gateway Configuration Loader

Reads gateway.yaml, expands environment references in string values and
applies the PORT / WEBHOOK_URL / WEBHOOK_TOKEN overrides last.

References:
- ${NAME}           - must be set, otherwise loading fails with KeyError
- ${NAME:-fallback} - fallback (possibly empty) when NAME is unset

Example:
```yaml
webhook:
  url: "${WEBHOOK_URL:-}"
bridge:
  http_url: "${BRIDGE_HTTP_URL:-http://localhost:3100}"
  ws_url: "${BRIDGE_WS_URL:-ws://localhost:3101}"
```
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import yaml

from .schema import GatewayConfig, apply_env_overrides

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "gateway.yaml"

# Explicit config location for service deployments
CONFIG_PATH_ENV = "GATEWAY_CONFIG"

ENV_REFERENCE = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _expand(text: str, env: Mapping[str, str]) -> str:
    def lookup(match: "re.Match[str]") -> str:
        name, fallback = match.group(1), match.group(2)
        if name in env:
            return env[name]
        if fallback is not None:
            return fallback
        raise KeyError(
            f"Environment variable '{name}' is referenced in {CONFIG_FILE_NAME} but not set "
            f"(use ${{{name}:-value}} to make it optional)"
        )

    return ENV_REFERENCE.sub(lookup, text)


def interpolate_env_vars(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Expand ${NAME} references in every string inside `value`"""
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        return _expand(value, env)
    if isinstance(value, dict):
        return {key: interpolate_env_vars(item, env) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item, env) for item in value]
    return value


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True
) -> GatewayConfig:
    """
    Build a GatewayConfig from one YAML file.

    Relative storage paths resolve against the file's directory unless the
    file sets `working_dir` itself.

    Raises:
        FileNotFoundError: the file does not exist
        KeyError: a required environment reference is unset
        yaml.YAMLError: the file is not valid YAML
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}

    if interpolate:
        try:
            raw = interpolate_env_vars(raw)
        except KeyError as e:
            logger.error(f"Configuration error: {e}")
            raise

    raw.setdefault("working_dir", str(config_path.parent.absolute()))
    return GatewayConfig.from_dict(raw)


def candidate_paths(working_dir: Optional[Path] = None) -> List[Path]:
    """Places gateway.yaml is looked for, most specific first"""
    roots = [working_dir] if working_dir else []
    roots.append(Path.cwd())
    return [path for root in roots for path in (root / CONFIG_FILE_NAME, root / "config" / CONFIG_FILE_NAME)]


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> GatewayConfig:
    """
    Load the gateway configuration.

    Resolution order:
    1. `config_path`, then $GATEWAY_CONFIG
    2. gateway.yaml or config/gateway.yaml under `working_dir`
    3. the same two under the current directory
    4. built-in defaults
    """
    working_dir = Path(working_dir) if working_dir else None
    explicit = config_path or os.environ.get(CONFIG_PATH_ENV)

    if explicit:
        config = load_config_from_file(explicit)
    else:
        found = next((path for path in candidate_paths(working_dir) if path.exists()), None)
        if found is not None:
            logger.info(f"Found configuration at {found}")
            config = load_config_from_file(found)
        else:
            logger.info(f"No {CONFIG_FILE_NAME} found, using default configuration")
            config = GatewayConfig(working_dir=working_dir or Path.cwd())

    return apply_env_overrides(config)
