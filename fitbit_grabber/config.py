"""
Configuration loading: TOML config file, .env file and FITBIT_* environment variables.
"""

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .callback_server import DEFAULT_REDIRECT_URL
from .errors import ConfigError
from .oauth_manager import AuthorizationRequest
from .token_store import DEFAULT_TOKEN_FILE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "fitbit-grabber" / "conf.toml"

# Environment variable -> config field
ENV_VARS = {
    "FITBIT_CLIENT_ID": "client_id",
    "FITBIT_CLIENT_SECRET": "client_secret",
    "FITBIT_REDIRECT_URI": "redirect_uri",
    "FITBIT_TOKEN_FILE": "token_file",
}


@dataclass
class FitbitConfig:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: str = DEFAULT_REDIRECT_URL
    token_file: str = DEFAULT_TOKEN_FILE

    def require_client(self) -> None:
        """Fail unless both OAuth client credentials are configured."""
        missing = []
        if not self.client_id:
            missing.append("FITBIT_CLIENT_ID")
        if not self.client_secret:
            missing.append("FITBIT_CLIENT_SECRET")
        if missing:
            raise ConfigError(f"Missing fitbit environment variables: {', '.join(missing)}")

    def authorization_request(self) -> AuthorizationRequest:
        self.require_client()
        return AuthorizationRequest(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_url=self.redirect_uri,
        )


def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"unable to read config file {path}: {e}") from e

    section = data.get("fitbit", {})
    if not isinstance(section, dict):
        raise ConfigError(f"invalid config file {path}: [fitbit] must be a table")
    return section


def load_config(path: Optional[Union[str, Path]] = None) -> FitbitConfig:
    """Build the configuration; environment variables override file values.

    A missing config file is fine, a broken one is not.
    """
    load_dotenv()
    config = FitbitConfig()

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        for key, value in _read_toml(config_path).items():
            if key in ENV_VARS.values() and value:
                setattr(config, key, str(value))
        logger.debug("Loaded config file %s", config_path)
    elif path:
        logger.warning("Config file %s not found, using environment only", config_path)

    for env_name, key in ENV_VARS.items():
        value = os.environ.get(env_name)
        if value:
            setattr(config, key, value)

    return config
