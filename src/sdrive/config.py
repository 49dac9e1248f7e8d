"""Configuration loading for the SDrive client."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import keyring

from sdrive.models import ClientConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "sdrive"
KEY_NAME = "auth_token"

DEFAULT_CONFIG_PATH = Path("config/sdrive.json")

BACKEND_URL_ENV = "SDRIVE_BACKEND_URL"
TOKEN_ENV = "SDRIVE_TOKEN"


def lookup_auth_token(service_name: str = SERVICE_NAME) -> str | None:
    """Get the session token: system keyring first, then SDRIVE_TOKEN env var fallback.

    Args:
        service_name: Keyring service the token is stored under.

    Returns:
        Token string, or ``None`` when neither source has one.
    """
    token = keyring.get_password(service_name, KEY_NAME)
    if token:
        return token

    return os.environ.get(TOKEN_ENV) or None


def load_client_config(config_path: Path | None = None) -> ClientConfig:
    """Load client configuration from JSON, falling back to defaults.

    Reads from ``config/sdrive.json`` when *config_path* is ``None``.  If the
    file does not exist, returns a ``ClientConfig`` with defaults.  The
    ``SDRIVE_BACKEND_URL`` environment variable overrides ``backend_url``.

    Args:
        config_path: Optional explicit path to the JSON config file.

    Returns:
        ClientConfig populated from file + environment overrides.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)
        logger.debug("Loaded client config from %s", config_path)

    # Only recognised fields; unknown keys are ignored
    field_names = {f.name for f in ClientConfig.__dataclass_fields__.values()}
    kwargs = {k: v for k, v in data.items() if k in field_names}
    ignored = sorted(set(data) - field_names)
    if ignored:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(ignored))

    config = ClientConfig(**kwargs)

    backend_url = os.environ.get(BACKEND_URL_ENV)
    if backend_url:
        config.backend_url = backend_url

    config.backend_url = config.backend_url.rstrip("/")
    return config
