"""Configuration loader with type-safe dataclasses."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .params import ParameterError, ParameterResolver


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


DEFAULT_TIMEOUT = 5
DEFAULT_MAX_RETRY_TIMES = 2
DEFAULT_MAX_LOG_DAYS = 3
DEFAULT_LOG_PATH = "data/ponghub_log.json"

# Probes are I/O bound; this only caps open connections per run.
DEFAULT_MAX_WORKERS = 8

SUPPORTED_METHODS = ("GET", "POST", "PUT")


def normalize_method(method: str | None) -> str:
    """Return the upper-cased HTTP method, defaulting to GET.

    Raises:
        ConfigError: If the method is not GET, POST or PUT.
    """
    if not method:
        return "GET"
    upper = method.strip().upper()
    if upper not in SUPPORTED_METHODS:
        raise ConfigError(f"HTTP method '{method}' is not supported (use one of {', '.join(SUPPORTED_METHODS)})")
    return upper


@dataclass(frozen=True)
class EndpointConfig:
    """Configuration for a single endpoint to probe.

    Success policy:
    - status_code: Expected status code. 0 means unset (expect 200 unless a regex is set).
    - response_regex: Pattern that must be found in the response body. Empty means unset.

    The parsed_* fields hold the URL, headers and body after parameter
    substitution. They are None when the endpoint was built without a resolver,
    in which case the raw values are sent as-is.
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    status_code: int = 0
    response_regex: str = ""
    parsed_url: str | None = None
    parsed_headers: dict[str, str] | None = None
    parsed_body: str | None = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Endpoint URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Endpoint URL must start with http:// or https:// ('{self.url}')")
        normalize_method(self.method)
        if self.status_code != 0 and not (100 <= self.status_code <= 599):
            raise ConfigError(f"Invalid HTTP status code: {self.status_code} (must be 100-599 or 0 for unset)")
        if self.response_regex:
            try:
                re.compile(self.response_regex)
            except re.error as e:
                raise ConfigError(f"Invalid response_regex '{self.response_regex}' for {self.url}: {e}")

    @property
    def request_url(self) -> str:
        return self.parsed_url if self.parsed_url is not None else self.url

    @property
    def request_headers(self) -> dict[str, str]:
        return self.parsed_headers if self.parsed_headers is not None else self.headers

    @property
    def request_body(self) -> str:
        return self.parsed_body if self.parsed_body is not None else self.body


@dataclass(frozen=True)
class ServiceConfig:
    """A named group of endpoints reported together."""

    name: str
    endpoints: list[EndpointConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Service name cannot be empty")
        if not self.endpoints:
            raise ConfigError(f"Service '{self.name}' must have at least one endpoint")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    services: list[ServiceConfig]
    timeout: int = DEFAULT_TIMEOUT  # seconds per HTTP attempt
    max_retry_times: int = DEFAULT_MAX_RETRY_TIMES  # attempts per endpoint
    max_log_days: int = DEFAULT_MAX_LOG_DAYS  # history retention
    log_path: str = DEFAULT_LOG_PATH
    max_workers: int = DEFAULT_MAX_WORKERS

    def __post_init__(self) -> None:
        if not self.services:
            raise ConfigError("At least one service must be configured")
        names = [service.name for service in self.services]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ConfigError(f"Duplicate service names found: {duplicates}")
        if self.timeout < 1:
            raise ConfigError(f"Timeout must be at least 1 second (got {self.timeout})")
        if self.max_retry_times < 1:
            raise ConfigError(f"max_retry_times must be at least 1 (got {self.max_retry_times})")
        if self.max_log_days < 1:
            raise ConfigError(f"max_log_days must be at least 1 (got {self.max_log_days})")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1 (got {self.max_workers})")
        if not self.log_path:
            raise ConfigError("log_path cannot be empty")

    @property
    def endpoint_count(self) -> int:
        return sum(len(service.endpoints) for service in self.services)


def _parse_headers(data: object, where: str) -> dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: 'headers' must be a dictionary")
    return {str(key): str(value) for key, value in data.items()}


def _parse_endpoint_config(data: dict, service_name: str, index: int, resolver: ParameterResolver) -> EndpointConfig:
    """Parse a single endpoint entry and resolve its parameters."""
    where = f"Service '{service_name}' endpoint {index}"
    if not isinstance(data, dict):
        raise ConfigError(f"{where} must be a dictionary")

    url = data.get("url")
    if url is None:
        raise ConfigError(f"{where} is missing 'url' field")

    headers = _parse_headers(data.get("headers"), where)
    body = data.get("body")
    body = str(body) if body is not None else ""

    try:
        parsed_url = resolver.resolve(str(url))
        parsed_headers = resolver.resolve_mapping(headers)
        parsed_body = resolver.resolve(body)
    except ParameterError as e:
        raise ConfigError(f"{where}: {e}")

    try:
        status_code = int(data.get("status_code") or 0)
    except (TypeError, ValueError):
        raise ConfigError(f"{where}: 'status_code' must be an integer")

    return EndpointConfig(
        url=str(url),
        method=str(data.get("method") or "GET"),
        headers=headers,
        body=body,
        status_code=status_code,
        response_regex=str(data.get("response_regex") or ""),
        parsed_url=parsed_url,
        parsed_headers=parsed_headers,
        parsed_body=parsed_body,
    )


def _parse_service_config(data: dict, index: int, resolver: ParameterResolver) -> ServiceConfig:
    """Parse a single service entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Service entry {index} must be a dictionary")

    name = data.get("name")
    if name is None:
        raise ConfigError(f"Service entry {index} is missing 'name' field")

    endpoints_data = data.get("endpoints")
    if endpoints_data is None:
        raise ConfigError(f"Service '{name}' is missing 'endpoints' field")
    if not isinstance(endpoints_data, list):
        raise ConfigError(f"Service '{name}': 'endpoints' must be a list")

    endpoints = [
        _parse_endpoint_config(endpoint_data, str(name), i, resolver) for i, endpoint_data in enumerate(endpoints_data)
    ]
    return ServiceConfig(name=str(name), endpoints=endpoints)


def _int_setting(data: dict, key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{key}' must be an integer (got {value!r})")
    return value or default


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - PONGHUB_TIMEOUT: Override timeout
    - PONGHUB_MAX_RETRY_TIMES: Override max_retry_times
    - PONGHUB_MAX_LOG_DAYS: Override max_log_days
    - PONGHUB_LOG_PATH: Override log_path
    """
    for key in ("timeout", "max_retry_times", "max_log_days"):
        value = os.environ.get(f"PONGHUB_{key.upper()}")
        if value is not None:
            try:
                config_data[key] = int(value)
            except ValueError:
                raise ConfigError(f"PONGHUB_{key.upper()} must be an integer (got {value!r})")

    log_path = os.environ.get("PONGHUB_LOG_PATH")
    if log_path is not None:
        config_data["log_path"] = log_path

    return config_data


def load_config(config_path: str, resolver: ParameterResolver | None = None) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.
        resolver: Parameter resolver for URL/header/body templates. A fresh
            one (current time, process environment) is used when omitted.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    data = _apply_env_overrides(data)
    resolver = resolver or ParameterResolver()

    services_data = data.get("services")
    if services_data is None:
        raise ConfigError("Configuration must contain a 'services' section")
    if not isinstance(services_data, list):
        raise ConfigError("'services' must be a list")

    services = [_parse_service_config(service_data, i, resolver) for i, service_data in enumerate(services_data)]

    return Config(
        services=services,
        timeout=_int_setting(data, "timeout", DEFAULT_TIMEOUT),
        max_retry_times=_int_setting(data, "max_retry_times", DEFAULT_MAX_RETRY_TIMES),
        max_log_days=_int_setting(data, "max_log_days", DEFAULT_MAX_LOG_DAYS),
        log_path=str(data.get("log_path") or DEFAULT_LOG_PATH),
        max_workers=_int_setting(data, "max_workers", DEFAULT_MAX_WORKERS),
    )
