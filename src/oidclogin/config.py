"""Settings resolution with a precedence chain.

This module turns the process environment into a validated
:class:`~oidclogin.models.Settings` instance:

* **Dotenv** -- a ``.env`` file in the working directory is loaded into the
  environment first (existing variables win), via :mod:`dotenv`.
* **Project-local config** -- an optional ``./oidclogin.json`` file holding
  any :class:`~oidclogin.models.Settings` field by name.
* **Precedence resolution** -- :func:`load_settings` merges explicit
  overrides (CLI flags), environment variables, the project file and the
  model defaults, in that order.

``ISSUER`` and ``CLIENT_ID`` have no default; a missing value raises
:class:`~oidclogin.exceptions.ConfigError`.
"""

from __future__ import annotations

import json
import logging
import os
import platform
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from oidclogin.exceptions import ConfigError
from oidclogin.models import Settings

logger = logging.getLogger(__name__)

_APP_NAME = "oidclogin"
_PROJECT_CONFIG_FILENAME = "oidclogin.json"
_DEFAULT_SESSION_SECRET = "dev_secret"

# Environment variable -> Settings field
_ENV_FIELDS: dict[str, str] = {
    "ISSUER": "issuer",
    "CLIENT_ID": "client_id",
    "CLIENT_SECRET": "client_secret",
    "REDIRECT_URI": "redirect_uri",
    "AUDIENCE": "audience",
    "SCOPES": "scopes",
    "HOST": "host",
    "PORT": "port",
    "SESSION_SECRET": "session_secret",
    "SESSION_MAX_AGE": "session_max_age",
    "SESSION_BACKEND": "session_backend",
    "SESSION_DIR": "session_dir",
    "HTTPS_ONLY": "https_only",
    "CORS_ORIGIN": "cors_origin",
    "HTTP_TIMEOUT": "http_timeout",
    "CLOCK_SKEW": "clock_skew",
    "POST_LOGIN_REDIRECT": "post_login_redirect",
}


def load_project_config(directory: Optional[Path] = None) -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./oidclogin.json``.

    Args:
        directory: Directory to look in; defaults to the working directory.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    path = (directory or Path.cwd()) / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid project config at {path}: expected a JSON object")
    return data


def _env_values(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Collect settings fields from environment variables.

    Empty strings are treated as unset, so ``AUDIENCE=`` in a ``.env`` file
    does not send an empty audience to the provider.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for var, field in _ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        if field == "scopes":
            values[field] = raw.replace(",", " ").split()
        else:
            values[field] = raw
    return values


def load_settings(
    overrides: Optional[dict[str, Any]] = None,
    env_file: Optional[str | Path] = ".env",
    environ: Optional[dict[str, str]] = None,
) -> Settings:
    """Resolve settings with full precedence chain.

    Precedence (high to low):
        1. ``overrides`` (CLI flags; ``None`` values are ignored)
        2. Environment variables (after loading ``env_file``)
        3. Project config (``./oidclogin.json``)
        4. Defaults

    Args:
        overrides: Explicit field values, typically from CLI options.
        env_file: Dotenv file to load before reading the environment, or
            ``None`` to skip it.
        environ: Environment mapping to read instead of :data:`os.environ`.

    Returns:
        The validated :class:`~oidclogin.models.Settings`.

    Raises:
        ConfigError: If ``ISSUER`` or ``CLIENT_ID`` is missing, or any value
            fails validation.
    """
    if env_file is not None and environ is None:
        load_dotenv(env_file, override=False)

    merged: dict[str, Any] = {}
    project = load_project_config()
    if project is not None:
        merged.update(project)
    merged.update(_env_values(environ))
    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})

    missing = [name for name in ("issuer", "client_id") if not merged.get(name)]
    if missing:
        names = ", ".join(name.upper() for name in missing)
        raise ConfigError(f"Set {names} in the environment or .env file")

    try:
        settings = Settings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    if settings.session_secret == _DEFAULT_SESSION_SECRET:
        logger.warning("[CONFIG] SESSION_SECRET is not set; using the development default")
    return settings


# --- Data directory ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_data_dir() -> Path:
    """Return the data directory (crash logs, disk sessions), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/oidclogin/`` (default ``~/.local/share/oidclogin/``).
    On macOS/Windows: ``~/.oidclogin/``.
    """
    if _is_xdg_platform():
        env_value = os.environ.get("XDG_DATA_HOME", "")
        base = Path(env_value) if env_value else Path.home() / ".local" / "share"
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


def masked_settings(settings: Settings) -> dict[str, Any]:
    """Return settings as a dict with secrets replaced by ``***``."""
    data = settings.model_dump(mode="json")
    for key in ("client_secret", "session_secret"):
        if data.get(key):
            data[key] = "***"
    return data
