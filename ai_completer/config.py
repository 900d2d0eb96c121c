"""Configuration management for the AI completer."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Manages configuration and environment variables for the rewrite client."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = self._load_yaml_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv(override=False)

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self._config_path, encoding="utf-8") as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @property
    def credential_env_var(self) -> str:
        """Name of the environment variable used as credential fallback."""
        return self.get_llm_config()["credential_env_var"]

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary.

        Returns:
            The complete configuration dictionary.
        """
        return self._config

    def get_llm_config(self) -> dict[str, Any]:
        """Get chat-completion request configuration from YAML.

        Returns:
            LLM request configuration dictionary with validated values.

        Raises:
            ValueError: If required parameters are missing or invalid.
        """
        llm_config = self._config.get("llm", {})

        required_keys = [
            "max_tokens", "error_snippet_chars", "credential_env_var",
            "streaming", "default_base_url"
        ]
        for key in required_keys:
            if key not in llm_config:
                raise ValueError(
                    f"llm.{key} must be explicitly configured in config.yaml"
                )

        if not isinstance(llm_config["max_tokens"], int) or llm_config["max_tokens"] < 1:
            raise ValueError("llm.max_tokens must be a positive integer")
        if llm_config["error_snippet_chars"] < 1:
            raise ValueError("llm.error_snippet_chars must be at least 1")
        if not str(llm_config["credential_env_var"]).strip():
            raise ValueError("llm.credential_env_var must not be empty")

        return llm_config

    def get_http_client_config(self) -> dict[str, Any]:
        """Get HTTP client configuration.

        Returns:
            HTTP client configuration dictionary with validated values.

        Raises:
            ValueError: If required HTTP client parameters are missing or invalid.
        """
        http_config = self._config.get("http_client", {})

        required_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]
        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"http_client.{key} must be explicitly configured in config.yaml"
                )
            if http_config[key] <= 0:
                raise ValueError(f"http_client.{key} must be positive")

        return http_config

    def get_settings_config(self) -> dict[str, Any]:
        """Get settings store configuration from YAML.

        Returns:
            Settings store configuration dictionary.

        Raises:
            ValueError: If required settings store parameters are missing.
        """
        settings_config = self._config.get("settings", {})

        required_keys = ["path", "lock_timeout"]
        for key in required_keys:
            if key not in settings_config:
                raise ValueError(
                    f"settings.{key} must be explicitly configured in config.yaml"
                )
        if settings_config["lock_timeout"] <= 0:
            raise ValueError("settings.lock_timeout must be positive")

        # Create new dictionary without mutating the original
        result_config = {**settings_config}
        result_config["path"] = os.path.expanduser(str(result_config["path"]))
        return result_config

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML.

        Returns:
            Logging configuration dictionary.
        """
        return self._config.get("logging", {})
