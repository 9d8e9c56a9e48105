"""Process environment configuration.

Read once at startup, validated, and frozen afterwards.

Environment variables
---------------------

``RPC_URL``
    JSON-RPC of the forked chain. Default ``http://127.0.0.1:8545``.

``MEE_URL``
    MEE node base URL. Default ``http://localhost:3000``.

``CHAIN_ID``
    Chain to run the demo on. Must be one of the chains in
    :py:data:`mee_harness.config.chains.AVAILABLE_CHAINS`. Default ``1``.

``LOG_LEVEL``
    One of ``fatal``, ``error``, ``warn``, ``info``, ``debug``, ``trace``.
    Default ``info``.

The stack setup script additionally needs ``PRIVATE_KEY`` and ``ETH_RPC_URL``,
see :py:class:`SetupConfig`.

Unset and empty variables take their defaults.

Example::

    from mee_harness.env_config import load_env_config

    config = load_env_config()
    print(config.rpc_url, config.chain_id)
"""

import logging
from typing import Annotated, Literal

from dotenv import load_dotenv
from pydantic import AfterValidator, AnyHttpUrl, TypeAdapter, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mee_harness.config.chains import get_available_chain_ids, get_chain

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "http://127.0.0.1:8545"

DEFAULT_MEE_URL = "http://localhost:3000"

DEFAULT_CHAIN_ID = 1

DEFAULT_LOG_LEVEL = "info"

LogLevel = Literal["fatal", "error", "warn", "info", "debug", "trace"]

#: Accepted log level names -> Python logging levels
LOG_LEVELS: dict[str, int] = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def _check_http_url(value: str) -> str:
    # Keep the string as given, AnyHttpUrl would append a trailing slash
    _HTTP_URL.validate_python(value)
    return value


#: http(s) URL kept as a plain string
HttpUrlStr = Annotated[str, AfterValidator(_check_http_url)]


class ConfigurationError(ValueError):
    """Environment configuration is missing or invalid."""


def _check_chain_id(chain_id: int) -> int:
    if chain_id <= 0:
        raise ValueError(f"CHAIN_ID must be positive, got: {chain_id}")
    if get_chain(chain_id) is None:
        available = ", ".join(str(c) for c in get_available_chain_ids())
        raise ValueError(f"Chain ID must be one of the available chains: {available}")
    return chain_id


def _to_configuration_error(e: ValidationError) -> ConfigurationError:
    """Turn pydantic errors into one line naming the variables."""
    errors = e.errors()
    missing = [str(err["loc"][0]).upper() for err in errors if err["type"] == "missing"]
    if missing:
        return ConfigurationError(f".env missing {' or '.join(missing)}")
    messages = [f"{str(err['loc'][0]).upper()}: {err['msg']}" for err in errors]
    return ConfigurationError("; ".join(messages))


class _EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(
        frozen=True,
        extra="ignore",
        case_sensitive=False,
        env_ignore_empty=True,
    )

    @classmethod
    def from_environ(cls):
        """Parse and validate :py:data:`os.environ`.

        :raise ConfigurationError:
            If any value is missing or fails validation
        """
        try:
            return cls()
        except ValidationError as e:
            raise _to_configuration_error(e) from e


class EnvConfig(_EnvSettings):
    """Validated runtime configuration shared by the SDK layer and the demo."""

    #: Forked chain JSON-RPC
    rpc_url: HttpUrlStr = DEFAULT_RPC_URL

    #: MEE node base URL, without the API version path
    mee_url: HttpUrlStr = DEFAULT_MEE_URL

    #: Chain the demo runs on
    chain_id: int = DEFAULT_CHAIN_ID

    #: One of :py:data:`LOG_LEVELS`
    log_level: LogLevel = DEFAULT_LOG_LEVEL

    @field_validator("mee_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("chain_id")
    @classmethod
    def _supported_chain(cls, value: int) -> int:
        return _check_chain_id(value)

    @field_validator("log_level", mode="before")
    @classmethod
    def _lower_log_level(cls, value):
        return value.lower() if isinstance(value, str) else value

    @property
    def python_log_level(self) -> int:
        return LOG_LEVELS[self.log_level]


class SetupConfig(_EnvSettings):
    """Configuration needed to bring up the local stack."""

    #: Private key the MEE node signs with, also funded on the fork
    private_key: str

    #: Upstream RPC Anvil forks from
    eth_rpc_url: HttpUrlStr

    #: Chain whose MEE node config gets the RPC override
    chain_id: int = DEFAULT_CHAIN_ID

    @field_validator("chain_id")
    @classmethod
    def _supported_chain(cls, value: int) -> int:
        return _check_chain_id(value)


def load_env_config(dotenv_path: str | None = None) -> EnvConfig:
    """Load ``.env`` into the process environment and parse :py:class:`EnvConfig`.

    Variables already set in the environment win over ``.env``.
    """
    load_dotenv(dotenv_path)
    config = EnvConfig.from_environ()
    logger.debug("Loaded configuration %s", config)
    return config
