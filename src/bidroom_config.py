# --- bidroom_config.py ---
"""
Runtime configuration: environment variables first, command-line flags on top.
"""

import os
import sys
import logging
import argparse
from dataclasses import dataclass, field

from bidroom_closer import DEFAULT_TICK_SECONDS

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def get_executable_directory():
    """Directory of the frozen executable or of the working tree root."""
    if getattr(sys, 'frozen', False):
        return os.path.dirname(sys.executable)
    return os.getcwd()


def _env_float(name, default):
    value = os.environ.get(name)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_int(name, default):
    return int(_env_float(name, default))


@dataclass
class AppConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    data_dir: str = field(default_factory=lambda: os.path.join(get_executable_directory(), "data"))
    log_dir: str = field(default_factory=lambda: os.path.join(get_executable_directory(), "logs"))
    setup_file: str = None
    public_dir: str = field(default_factory=lambda: os.path.join(get_executable_directory(), "public"))
    tick_seconds: float = DEFAULT_TICK_SECONDS
    log_level: str = "INFO"

    def __post_init__(self):
        # The data directory doubles as the setup source (users.json / players.json)
        if not self.setup_file:
            self.setup_file = self.data_dir
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")

    @classmethod
    def from_env(cls):
        defaults = cls()
        data_dir = os.environ.get("BIDROOM_DATA_DIR") or defaults.data_dir
        return cls(
            host=os.environ.get("BIDROOM_HOST") or defaults.host,
            port=_env_int("BIDROOM_PORT", _env_int("PORT", defaults.port)),
            data_dir=data_dir,
            log_dir=os.environ.get("BIDROOM_LOG_DIR") or defaults.log_dir,
            setup_file=os.environ.get("BIDROOM_SETUP") or data_dir,
            public_dir=os.environ.get("BIDROOM_PUBLIC_DIR") or defaults.public_dir,
            tick_seconds=_env_float("BIDROOM_TICK_SECONDS", defaults.tick_seconds),
            log_level=(os.environ.get("BIDROOM_LOG_LEVEL") or defaults.log_level).upper(),
        )


def build_arg_parser():
    parser = argparse.ArgumentParser(description="Bidroom live auction server.")
    parser.add_argument("--host", help="Host to bind to (env BIDROOM_HOST, default 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, help="Port to run on (env PORT / BIDROOM_PORT, default 3000)")
    parser.add_argument("--data-dir", help="Directory for state.json and the JSON catalogs (env BIDROOM_DATA_DIR)")
    parser.add_argument("--log-dir", help="Directory for the audit log (env BIDROOM_LOG_DIR)")
    parser.add_argument("--setup", dest="setup_file", help="Setup source: data directory, setup CSV or Excel workbook (env BIDROOM_SETUP)")
    parser.add_argument("--public-dir", help="Directory served at / (env BIDROOM_PUBLIC_DIR)")
    parser.add_argument("--tick", dest="tick_seconds", type=float, help="Closer cadence in seconds (env BIDROOM_TICK_SECONDS, default 1)")
    parser.add_argument("--log-level", help="Logging level (env BIDROOM_LOG_LEVEL, default INFO)")
    return parser


def load_config(argv=None):
    args = build_arg_parser().parse_args(argv)
    config = AppConfig.from_env()
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    if "data_dir" in overrides and "setup_file" not in overrides and not os.environ.get("BIDROOM_SETUP"):
        overrides["setup_file"] = overrides["data_dir"]
    if "log_level" in overrides:
        overrides["log_level"] = overrides["log_level"].upper()
    return AppConfig(**{**config.__dict__, **overrides})


def configure_logging(level="INFO"):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
    # Disable werkzeug request logs for a cleaner terminal
    logging.getLogger('werkzeug').setLevel(logging.ERROR)
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)


def ensure_directories(config):
    os.makedirs(config.data_dir, exist_ok=True)
    os.makedirs(config.log_dir, exist_ok=True)
