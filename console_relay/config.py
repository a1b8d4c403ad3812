"""Configuration for the relay host (YAML + env) and the instrumented runtime (env JSON)."""

import copy
import json
import logging
import os
from dataclasses import dataclass, field, replace

import yaml

from console_relay.models import LEVELS

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4973
CLIENT_CONFIG_ENV = "CONSOLE_RELAY_CONFIG"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class CaptureOptions:
    """Limits applied by the value serializer."""

    max_depth: int = 4
    max_props: int = 50
    max_array: int = 50
    max_string_length: int = 2000

    # wire name -> field name
    _WIRE_KEYS = {
        "maxDepth": "max_depth",
        "maxProps": "max_props",
        "maxArray": "max_array",
        "maxStringLength": "max_string_length",
    }

    @classmethod
    def from_dict(cls, data: dict | None) -> "CaptureOptions":
        """Build options from a camelCase or snake_case dict; missing keys use defaults."""
        if not data:
            return cls()
        kwargs = {}
        for wire_key, name in cls._WIRE_KEYS.items():
            value = data.get(wire_key, data.get(name))
            if value is not None:
                kwargs[name] = int(value)
        return cls(**kwargs)

    def to_wire(self) -> dict:
        return {
            "maxDepth": self.max_depth,
            "maxProps": self.max_props,
            "maxArray": self.max_array,
            "maxStringLength": self.max_string_length,
        }


@dataclass(frozen=True)
class PathMapping:
    url_prefix: str
    local_path_prefix: str


def parse_path_mappings(raw) -> tuple[PathMapping, ...]:
    """Convert a list of mapping dicts into PathMapping tuples, skipping incomplete ones."""
    mappings = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        url_prefix = item.get("url_prefix", item.get("urlPrefix"))
        local_prefix = item.get("local_path_prefix", item.get("localPathPrefix"))
        if not url_prefix or not local_prefix:
            logger.warning("Ignoring incomplete path mapping: %s", item)
            continue
        mappings.append(PathMapping(str(url_prefix), str(local_prefix)))
    return tuple(mappings)


# ---------------------------------------------------------------------------
# Host side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HostConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_log_entries: int = 2000
    inline_enabled: bool = True
    inline_max_text_length: int = 120
    inline_show_timestamp: bool = False
    enabled_levels: tuple[str, ...] = LEVELS
    network_enabled: bool = True
    capture_errors: bool = True
    path_mappings: tuple[PathMapping, ...] = ()
    capture_options: CaptureOptions = field(default_factory=CaptureOptions)

    def client_payload(self) -> dict:
        """Config subset pushed to connected runtimes."""
        return {
            "networkEnabled": self.network_enabled,
            "captureErrors": self.capture_errors,
            "logCaptureOptions": self.capture_options.to_wire(),
        }


DEFAULTS = {
    "server": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_PORT,
    },
    "storage": {
        "max_log_entries": 2000,
    },
    "inline": {
        "enabled": True,
        "max_text_length": 120,
        "show_timestamp": False,
    },
    "output": {
        "enabled_levels": list(LEVELS),
    },
    "network": {
        "enabled": True,
    },
    "capture": {
        "errors": True,
        "max_depth": 4,
        "max_props": 50,
        "max_array": 50,
        "max_string_length": 2000,
    },
    "path_mappings": [],
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override dict into base dict."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_yaml_config(path: str | None) -> dict:
    """Load a YAML file. Returns an empty dict if there is no usable file."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        logger.warning("Invalid YAML in %s, using defaults: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def host_config_from_dict(data: dict) -> HostConfig:
    """Convert a (merged) config dict into a HostConfig."""
    merged = deep_merge(DEFAULTS, data)
    server = merged["server"]
    inline = merged["inline"]
    capture = merged["capture"]

    levels = tuple(
        level for level in merged["output"]["enabled_levels"] if level in LEVELS
    )

    return HostConfig(
        host=str(server["host"]),
        port=int(server["port"]),
        max_log_entries=int(merged["storage"]["max_log_entries"]),
        inline_enabled=bool(inline["enabled"]),
        inline_max_text_length=int(inline["max_text_length"]),
        inline_show_timestamp=bool(inline["show_timestamp"]),
        enabled_levels=levels,
        network_enabled=bool(merged["network"]["enabled"]),
        capture_errors=bool(capture["errors"]),
        path_mappings=parse_path_mappings(merged["path_mappings"]),
        capture_options=CaptureOptions.from_dict(capture),
    )


def load_host_config(path: str | None = None, environ=None) -> HostConfig:
    """Build HostConfig from defaults <- YAML file <- env vars (highest priority)."""
    if environ is None:
        environ = os.environ
    if path is None:
        path = environ.get("RELAY_CONFIG", "relay.yaml")

    data = load_yaml_config(path)

    env_overrides: dict = {}
    if "RELAY_HOST" in environ:
        env_overrides.setdefault("server", {})["host"] = environ["RELAY_HOST"]
    if "RELAY_PORT" in environ:
        env_overrides.setdefault("server", {})["port"] = int(environ["RELAY_PORT"])
    if "RELAY_MAX_LOG_ENTRIES" in environ:
        env_overrides.setdefault("storage", {})["max_log_entries"] = int(
            environ["RELAY_MAX_LOG_ENTRIES"]
        )
    if "RELAY_NETWORK_ENABLED" in environ:
        env_overrides.setdefault("network", {})["enabled"] = _parse_bool(
            environ["RELAY_NETWORK_ENABLED"]
        )

    return host_config_from_dict(deep_merge(data, env_overrides))


# ---------------------------------------------------------------------------
# Runtime side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    capture_console: bool = True
    capture_errors: bool = True
    network_enabled: bool = True
    capture_options: CaptureOptions = field(default_factory=CaptureOptions)


# wire name -> ClientConfig field
_CLIENT_KEYS = {
    "host": "host",
    "port": "port",
    "captureConsole": "capture_console",
    "captureErrors": "capture_errors",
    "networkEnabled": "network_enabled",
    "logCaptureOptions": "capture_options",
}


def merge_client_config(config: ClientConfig, data: dict | None) -> ClientConfig:
    """Shallow-merge a dict into config: given keys override, absent keys are kept.

    Accepts wire (camelCase) or field (snake_case) names. Unknown keys are ignored.
    """
    if not data:
        return config
    changes = {}
    for key, value in data.items():
        name = _CLIENT_KEYS.get(key, key)
        if name not in _CLIENT_KEYS.values() or value is None:
            continue
        if name == "capture_options":
            if isinstance(value, CaptureOptions):
                changes[name] = value
            elif isinstance(value, dict):
                changes[name] = CaptureOptions.from_dict(value)
            continue
        if name == "port":
            value = int(value)
        elif name != "host":
            value = bool(value)
        changes[name] = value
    return replace(config, **changes)


def parse_env_config(raw: str | None) -> dict:
    """Parse the JSON config passed through the environment. Invalid input yields {}."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Ignoring invalid %s value", CLIENT_CONFIG_ENV)
        return {}
    if not isinstance(parsed, dict):
        return {}
    port = parsed.get("port")
    if isinstance(port, str):
        try:
            parsed["port"] = int(port)
        except ValueError:
            del parsed["port"]
    return parsed


def load_client_config(overrides: dict | None = None, environ=None) -> ClientConfig:
    """Build ClientConfig from defaults <- env JSON <- explicit overrides."""
    if environ is None:
        environ = os.environ
    config = ClientConfig()
    config = merge_client_config(config, parse_env_config(environ.get(CLIENT_CONFIG_ENV)))
    return merge_client_config(config, overrides)
