"""Gateway configuration from a JSON file and command-line flags."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Sequence

DEFAULT_USER_CONFIG_FILE = "/etc/cvmfs/gateway/user.json"
_DEFAULT_MAX_LEASE_SECONDS = 7200


class ConfigError(Exception):
    """The configuration could not be loaded."""


@dataclass
class Config:
    """All configuration options of the gateway."""

    port: int = 4929
    max_lease_time: timedelta = timedelta(seconds=_DEFAULT_MAX_LEASE_SECONDS)
    lease_db: str = "boltdb"
    etcd_endpoints: list[str] = field(default_factory=list)
    log_level: str = "info"
    log_timestamps: bool = False
    access_config_file: str = "/etc/cvmfs/gateway/repo.json"
    num_receivers: int = 1
    receiver_path: str = "/usr/bin/cvmfs_receiver"
    work_dir: str = "/var/lib/cvmfs-gateway"
    mock_receiver: bool = False


_OPTIONS: dict[str, tuple[str, str]] = {
    "access_config_file": ("str", "repository access configuration file"),
    "port": ("int", "HTTP frontend port"),
    "max_lease_time": ("int", "maximum lease time in seconds"),
    "lease_db": ("str", "lease DB backend to use: boltdb, sqlite, or etcd (default boltdb)"),
    "etcd_endpoints": ("list", "etcd cluster endpoints (for gateway clustering)"),
    "log_level": ("str", "log level (debug|info|warn|error|fatal|panic)"),
    "log_timestamps": ("bool", "enable timestamps in logging output"),
    "num_receivers": ("int", "number of parallel cvmfs_receiver processes to run"),
    "receiver_path": ("str", "the path of the cvmfs_receiver executable"),
    "work_dir": ("str", "the working directory for database files"),
    "mock_receiver": (
        "bool",
        "enable the mocked implementation of the receiver process (for testing)",
    ),
}

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"", "0", "f", "F", "FALSE", "false", "False"})


def _invalid(key: str, value: Any) -> ConfigError:
    return ConfigError(
        f"could not populate configuration object: invalid value for {key}: {value!r}"
    )


def _to_int(value: Any, key: str) -> int:
    if isinstance(value, (bool, int)):
        return int(value)
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        if value == "":
            return 0
        try:
            return int(value, 0)
        except ValueError:
            raise _invalid(key, value) from None
    raise _invalid(key, value)


def _to_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
    raise _invalid(key, value)


def _to_str(value: Any, key: str) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise _invalid(key, value)


def _to_list(value: Any, key: str) -> list[str]:
    if isinstance(value, str):
        return value.split(",") if value else []
    if isinstance(value, list):
        return [_to_str(item, key) for item in value]
    raise _invalid(key, value)


_CONVERTERS: dict[str, Callable[[Any, str], Any]] = {
    "int": _to_int,
    "bool": _to_bool,
    "str": _to_str,
    "list": _to_list,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Repository gateway")
    parser.add_argument(
        "--user_config_file",
        default=DEFAULT_USER_CONFIG_FILE,
        help="config file with user modifiable settings",
    )
    parser.add_argument(
        "--use_etcd",
        nargs="?",
        const="true",
        default=None,
        help="use etcd as a consistent data store for lease information "
        "(for gateway clustering)",
    )
    for name, (kind, help_text) in _OPTIONS.items():
        flag = f"--{name}"
        if kind == "bool":
            parser.add_argument(flag, nargs="?", const="true", default=None, help=help_text)
        elif kind == "int":
            parser.add_argument(flag, type=int, default=None, help=help_text)
        elif kind == "list":
            parser.add_argument(flag, action="append", default=None, help=help_text)
        else:
            parser.add_argument(flag, default=None, help=help_text)
    return parser


def _lower_keys(data: dict) -> dict:
    return {str(key).lower(): value for key, value in data.items()}


def _read_file(path: str) -> dict:
    try:
        with open(path, encoding="utf-8") as stream:
            data = json.load(stream)
    except (OSError, ValueError):
        return {}
    return _lower_keys(data) if isinstance(data, dict) else {}


def _receiver_setting(file_data: dict, section: str, key: str, convert) -> Any | None:
    sub = file_data.get(section)
    if not isinstance(sub, dict):
        return None
    value = _lower_keys(sub).get(key)
    try:
        return convert(value if value is not None else "", f"{section}.{key}")
    except ConfigError as exc:
        raise ConfigError(f"could not load receiver config: {exc}") from None


def read_config(argv: Sequence[str] | None = None) -> Config:
    """Read the user configuration file and command-line flags into a Config.

    Flags given explicitly win over the file, which wins over the defaults.
    The legacy keys ``fe_tcp_port``, ``receiver_config.size`` and
    ``receiver_worker_config.executable_path`` are honoured as well.
    """
    args = _build_parser().parse_args(argv)
    file_data = _read_file(args.user_config_file)

    values: dict[str, Any] = {}
    for name, (kind, _) in _OPTIONS.items():
        flag_value = getattr(args, name)
        if flag_value is not None:
            if kind == "list":
                flag_value = [part for item in flag_value for part in _to_list(item, name)]
            raw = flag_value
        elif name in file_data:
            raw = file_data[name]
        else:
            continue
        values[name] = _CONVERTERS[kind](raw, name)

    if "max_lease_time" in values:
        values["max_lease_time"] = timedelta(seconds=values["max_lease_time"])

    config = Config(**values)

    if "fe_tcp_port" in file_data:
        try:
            config.port = _to_int(file_data["fe_tcp_port"], "fe_tcp_port")
        except ConfigError:
            config.port = 0

    size = _receiver_setting(file_data, "receiver_config", "size", _to_int)
    if size is not None and args.num_receivers is None:
        config.num_receivers = size

    executable = _receiver_setting(
        file_data, "receiver_worker_config", "executable_path", _to_str
    )
    if executable is not None and args.receiver_path is None:
        config.receiver_path = executable

    return config