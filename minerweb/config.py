"""
minerweb - Configuration Manager
==================================
Handles loading and saving of the miner configuration from two sources:

1. config.yaml  - Non-sensitive settings (web console, miner, backends)
2. .env         - Secrets (console password)

The web console changes settings and plot directories through this manager;
every change is validated by the caller before update() writes anything.

Usage:
    config = ConfigManager(project_dir="/path/to/miner")
    settings = config.load()                       # Merged with DEFAULTS
    config.update({"miner": {"intensity": 4}})     # Updates config.yaml
    config.add_plot_dir("/mnt/plots1")
"""

import os
import yaml
from dotenv import dotenv_values

from minerweb.auth import hash_password


# Default configuration values used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "host": "0.0.0.0",
        "port": 8124,
        "title": "minerweb",
        "user": "admin",
        "session_timeout": 1800,
        "queue_size": 64,
        "version_url": "",
        "version_timeout": 5,
    },
    "miner": {
        "plot_dirs": [],
        "intensity": 0,
        "buffer_size": 0,
        "target_deadline": 0,
        "poll_interval": 3,
    },
    "backends": {
        "wallet": "http://127.0.0.1:8125",
        "pool": "",
        "timeout": 30,
    },
}

# Top-level sections that are persisted to config.yaml
SECTIONS = ["web", "miner", "backends"]

PASSWORD_ENV = "MINERWEB_PASSWORD"
PASSWORD_HASH_ENV = "MINERWEB_PASSWORD_HASH"


class ConfigManager:
    """
    Reads and writes the miner's config.yaml and its .env secrets.

    Attributes:
        project_dir: Installation directory of the miner.
        config_path: Location of config.yaml.
        env_path:    Location of .env.
    """

    def __init__(self, project_dir: str):
        self.project_dir = project_dir
        self.config_path = os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")

    def load(self) -> dict:
        """
        Return the effective miner configuration.

        Every key of DEFAULTS is present in the result. When config.yaml
        cannot be parsed the defaults are returned as they are and the parse
        error is kept under "_config_error" for the app to log.
        """
        config = _deep_copy(DEFAULTS)
        if not os.path.exists(self.config_path):
            return config

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                overrides = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            config["_config_error"] = str(e)
            return config

        if not isinstance(overrides, dict):
            config["_config_error"] = "config.yaml must hold a mapping of sections"
            return config

        _deep_merge(config, overrides)
        return config

    def save(self, config: dict) -> None:
        """Write the web, miner and backends sections to config.yaml."""
        sections = {name: config[name] for name in SECTIONS if name in config}
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(sections, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def update(self, updates: dict) -> dict:
        """
        Apply a partial change (e.g. {"miner": {"intensity": 4}}) and persist
        it. Callers validate the values first.

        Returns:
            The configuration after the change.
        """
        config = self.load()
        _deep_merge(config, updates)
        self.save(config)
        return config

    # -- Plot Directories -----------------------------------------------------

    def add_plot_dir(self, path: str) -> list[str]:
        """
        Append a plot directory to the miner configuration.

        Raises:
            ValueError: If the directory is already configured.
        """
        config = self.load()
        plot_dirs = list(config["miner"].get("plot_dirs") or [])
        if path in plot_dirs:
            raise ValueError(f"Plot directory '{path}' is already configured")
        plot_dirs.append(path)
        config["miner"]["plot_dirs"] = plot_dirs
        self.save(config)
        return plot_dirs

    def remove_plot_dir(self, path: str) -> list[str]:
        """
        Remove a plot directory from the miner configuration.

        Raises:
            KeyError: If the directory is not configured.
        """
        config = self.load()
        plot_dirs = list(config["miner"].get("plot_dirs") or [])
        if path not in plot_dirs:
            raise KeyError(f"Plot directory '{path}' not found")
        plot_dirs.remove(path)
        config["miner"]["plot_dirs"] = plot_dirs
        self.save(config)
        return plot_dirs

    # -- Secrets --------------------------------------------------------------

    def get_password_hash(self) -> bytes | None:
        """
        Return the bcrypt hash of the console password, or None if unset.

        Reads MINERWEB_PASSWORD_HASH, falling back to hashing
        MINERWEB_PASSWORD. Values in the process environment take precedence
        over the .env file.
        """
        env_values = dotenv_values(self.env_path) if os.path.exists(self.env_path) else {}

        password_hash = os.environ.get(PASSWORD_HASH_ENV) or env_values.get(PASSWORD_HASH_ENV)
        if password_hash:
            return password_hash.encode("utf-8")

        password = os.environ.get(PASSWORD_ENV) or env_values.get(PASSWORD_ENV)
        if password:
            return hash_password(password)

        return None


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(section: dict) -> dict:
    """Copy DEFAULTS-shaped data so callers never share its dicts or lists."""
    return {
        key: _deep_copy(value) if isinstance(value, dict)
        else list(value) if isinstance(value, list)
        else value
        for key, value in section.items()
    }


def _deep_merge(config: dict, changes: dict) -> None:
    """
    Fold changes into config in place: sections merge key by key, any other
    value (plot_dirs included) is replaced whole.
    """
    for key, value in changes.items():
        current = config.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_merge(current, value)
        else:
            config[key] = value
