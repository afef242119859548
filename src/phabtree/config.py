"""Configuration file loading and validation for phabtree."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

FAILURE_POLICIES = ("partial", "strict")
DEFAULT_DONE_STATUSES = ("resolved",)


@dataclass(frozen=True)
class CertIdentityConfig:
    """PKCS#12 bundle used as the TLS client identity."""

    pkcs12_path: str
    pkcs12_password: str


@dataclass(frozen=True)
class ClientConfig:
    """Everything the API client needs at construction."""

    host: str
    api_token: str
    cert_identity_config: Optional[CertIdentityConfig] = None
    timeout: float = 30.0


@dataclass(frozen=True)
class BuildOptions:
    """Tree build and rendering settings."""

    failure_policy: str = "partial"
    max_workers: int = 4
    retry_delay: float = 0.5
    done_statuses: tuple = DEFAULT_DONE_STATUSES


@dataclass(frozen=True)
class Settings:
    """Parsed configuration file merged with command-line overrides."""

    client: ClientConfig
    build: BuildOptions = field(default_factory=BuildOptions)
    source_file: Optional[Path] = None


class ConfigLoader:
    """Finds, parses and validates the phab configuration file."""

    CANDIDATES = (".phab", ".phab.yaml")
    ENV_VAR = "PHAB_CONFIG"

    def __init__(self, home: Optional[Path] = None):
        self.home = home if home is not None else Path.home()

    def find_config_file(self) -> Optional[Path]:
        """Find the configuration file, honouring ``$PHAB_CONFIG`` first."""
        env_path = os.environ.get(self.ENV_VAR)
        if env_path:
            return Path(env_path).expanduser()

        for candidate in self.CANDIDATES:
            config_file = self.home / candidate
            if config_file.is_file():
                return config_file
        return None

    def read(self, config_file: Optional[Path] = None) -> Dict[str, Any]:
        """
        Read the raw configuration mapping.

        Returns an empty mapping when no configuration file exists, so that
        everything can still be supplied on the command line.

        Raises:
            ConfigError: If the file is unreadable or not a YAML mapping
        """
        if config_file is None:
            config_file = self.find_config_file()
            if config_file is None:
                return {}

        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")

        try:
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid config file {config_file}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_file} must contain a mapping")

        return data

    def load(
        self,
        config_file: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Settings:
        """
        Load the configuration and apply command-line overrides.

        Args:
            config_file: Explicit config path (``--config``)
            overrides: Non-None values replace file values; the
                ``pkcs12_path``/``pkcs12_password`` keys override the
                nested certificate identity settings

        Raises:
            ConfigError: Listing every validation problem found
        """
        if config_file is None:
            config_file = self.find_config_file()
        data = self.read(config_file) if config_file is not None else {}
        data = merge_overrides(data, overrides or {})
        settings = parse_settings(data)
        return Settings(client=settings.client, build=settings.build, source_file=config_file)


def merge_overrides(data: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` with non-None overrides applied."""
    result = dict(data)
    cert = dict(result.get("cert_identity_config") or {})

    for key, value in overrides.items():
        if value is None:
            continue
        if key in ("pkcs12_path", "pkcs12_password"):
            cert[key] = value
        else:
            result[key] = value

    if cert:
        result["cert_identity_config"] = cert
    return result


def parse_settings(data: Dict[str, Any]) -> Settings:
    """Validate a raw configuration mapping and build Settings from it."""
    errors: List[str] = []

    host = data.get("host")
    api_token = data.get("api_token")
    if not host:
        errors.append("Missing required 'host' setting")
    if not api_token:
        errors.append("Missing required 'api_token' setting")

    cert_identity = None
    cert_data = data.get("cert_identity_config")
    if cert_data:
        if not isinstance(cert_data, dict):
            errors.append("'cert_identity_config' must be a mapping")
        else:
            missing = [key for key in ("pkcs12_path", "pkcs12_password") if cert_data.get(key) is None]
            for key in missing:
                errors.append(f"'cert_identity_config' is missing '{key}'")
            if not missing:
                cert_identity = CertIdentityConfig(
                    pkcs12_path=str(Path(str(cert_data["pkcs12_path"])).expanduser()),
                    pkcs12_password=str(cert_data["pkcs12_password"]),
                )

    failure_policy = data.get("failure_policy", "partial")
    if failure_policy not in FAILURE_POLICIES:
        errors.append(
            f"Unknown failure_policy '{failure_policy}', expected one of: {', '.join(FAILURE_POLICIES)}"
        )

    max_workers = _as_number(data, "max_workers", 4, int, errors)
    if max_workers is not None and max_workers < 1:
        errors.append("'max_workers' must be at least 1")

    timeout = _as_number(data, "timeout", 30.0, float, errors)
    retry_delay = _as_number(data, "retry_delay", 0.5, float, errors)

    done_statuses = data.get("done_statuses", list(DEFAULT_DONE_STATUSES))
    if isinstance(done_statuses, str):
        done_statuses = [done_statuses]
    if not isinstance(done_statuses, list):
        errors.append("'done_statuses' must be a list of status names")
        done_statuses = list(DEFAULT_DONE_STATUSES)

    if errors:
        raise ConfigError("Configuration errors:\n" + "\n".join(errors))

    return Settings(
        client=ClientConfig(
            host=str(host).rstrip("/"),
            api_token=str(api_token),
            cert_identity_config=cert_identity,
            timeout=timeout,
        ),
        build=BuildOptions(
            failure_policy=failure_policy,
            max_workers=max_workers,
            retry_delay=retry_delay,
            done_statuses=tuple(str(status) for status in done_statuses),
        ),
    )


def _as_number(data: Dict[str, Any], key: str, default, cast, errors: List[str]):
    value = data.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        errors.append(f"'{key}' must be a number, got {value!r}")
        return default


SAMPLE_CONFIG = """# phab configuration
# Conduit API tokens are created under Settings > Conduit API Tokens

host: https://phabricator.example.com
api_token: api-xxxxxxxxxxxxxxxxxxxxxxxxxxxx

# Optional TLS client certificate for mutual TLS
# cert_identity_config:
#   pkcs12_path: ~/certs/phabricator.p12
#   pkcs12_password: changeme

# Statuses counted as done in the report summary
done_statuses: [resolved]

# partial: failed subtasks are shown inline, strict: any failure aborts
failure_policy: partial
max_workers: 4
"""
