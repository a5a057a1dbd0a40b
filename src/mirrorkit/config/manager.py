"""Configuration management for mirrorkit"""

import os
from pathlib import Path
from typing import Any, Dict

import yaml

from ..orchestrator.errors import ConfigurationError

LICENSE_PLACEHOLDER = "PASTE_YOUR_LICENSE_KEY_HERE"


class ConfigManager:
    """Manage mirrorkit configuration"""

    def __init__(self, config_path: Path):
        self.config_path = config_path

    def load(self) -> Dict[str, Any]:
        """Load configuration from file and environment"""
        config = self._load_defaults()

        # Load from file if exists
        if self.config_path.exists():
            with open(self.config_path) as f:
                try:
                    file_config = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e
                if not isinstance(file_config, dict):
                    raise ConfigurationError(f"{self.config_path} must contain a mapping")
                config = self._merge(config, file_config)

        # Override with environment variables
        config = self._apply_env_overrides(config)

        return config

    def save(self, config: Dict[str, Any]) -> None:
        """Save configuration to file"""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    def _load_defaults(self) -> Dict[str, Any]:
        """Load default configuration"""
        return {
            "deploy": {
                "base_dir": str(Path.cwd() / "bb-deploy"),
                "network": "bb-net",
                "run_timeout": 1800,
            },
            "bitbucket": {
                "version": "9.4.15",
                "license": LICENSE_PLACEHOLDER,
                "admin_user": "admin",
                "admin_password": "admin123",
                "primary_name": "Local Primary",
                "mirror_name": "Local Mirror",
                "primary_port": 8443,
                "mirror_port": 9443,
                "ssh_port": 7999,
                "uid": 2003,
                "gid": 2003,
            },
            "postgres": {
                "version": "15",
                "database": "bitbucket",
                "user": "bitbucket",
                "password": "bitbucket",
            },
            "opensearch": {
                "version": "2.11.0",
                "heap": "512m",
            },
            "api": {
                "base_url": "https://localhost:8443",
                "timeout": 30,
                "verify": False,
            },
            "setup": {
                "project_key": "DEMO",
                "project_name": "Demo Project",
                "repositories": ["repo-1"],
            },
            "services": {},
            "logging": {
                "level": "info",
            },
        }

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge two configuration dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides"""
        if license_key := os.getenv("MIRRORKIT_LICENSE_KEY"):
            config["bitbucket"]["license"] = license_key

        if password := os.getenv("MIRRORKIT_ADMIN_PASSWORD"):
            config["bitbucket"]["admin_password"] = password

        if base_dir := os.getenv("MIRRORKIT_BASE_DIR"):
            config["deploy"]["base_dir"] = base_dir

        if url := os.getenv("MIRRORKIT_API_URL"):
            config["api"]["base_url"] = url

        return config


def license_key(config: Dict[str, Any]) -> str:
    """Return the license key with all whitespace removed.

    Raises ConfigurationError when the key is empty or still the placeholder.
    """
    key = "".join(str(config.get("bitbucket", {}).get("license", "")).split())
    if not key or key == LICENSE_PLACEHOLDER:
        raise ConfigurationError(
            "A valid Bitbucket Data Center license key is required "
            "(set bitbucket.license or MIRRORKIT_LICENSE_KEY)"
        )
    return key
