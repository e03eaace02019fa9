"""Configuration management for the chat relay."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

from chat_relay.llm.models import ProviderConfig, ProviderType
from chat_relay.relay.models import RelayOptions

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Manages configuration and environment variables for the relay.

    Everything a relay session needs is resolved here, once, into explicit
    values; sessions never consult the environment themselves.
    """

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.config_path = config_path or os.getenv(
            "CHAT_RELAY_CONFIG", DEFAULT_CONFIG_PATH
        )
        self.load_env()  # Load .env for API keys
        self._config = self._load_yaml_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self.config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @property
    def active_provider(self) -> str:
        """Name of the provider used when a request does not pick one.

        Raises:
            ValueError: If the active provider is missing or unknown.
        """
        llm_config = self._config.get("llm", {})
        if "active" not in llm_config:
            raise ValueError(
                "llm.active must be explicitly configured in config.yaml"
            )
        active = llm_config["active"]
        try:
            ProviderType(active)
        except ValueError:
            raise ValueError(f"Unknown provider '{active}' in llm.active") from None
        return active

    def get_provider_configs(self) -> dict[str, ProviderConfig]:
        """Build provider settings from YAML, with keys from the environment.

        Returns:
            Mapping of provider name to ProviderConfig.

        Raises:
            ValueError: If a provider block is incomplete or unknown.
        """
        providers = self._config.get("llm", {}).get("providers", {})
        required_keys = ["base_url", "default_model", "api_key_env"]
        timeout_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]

        result: dict[str, ProviderConfig] = {}
        for name, block in providers.items():
            try:
                ProviderType(name)
            except ValueError:
                raise ValueError(
                    f"Unknown provider '{name}' under llm.providers"
                ) from None

            for key in required_keys:
                if key not in block:
                    raise ValueError(
                        f"llm.providers.{name}.{key} must be explicitly "
                        "configured in config.yaml"
                    )

            http_config = block.get("http_client", {})
            for key in timeout_keys:
                if key in http_config and http_config[key] <= 0:
                    raise ValueError(
                        f"llm.providers.{name}.http_client.{key} must be positive"
                    )

            result[name] = ProviderConfig(
                name=name,
                base_url=block["base_url"],
                default_model=block["default_model"],
                api_key=os.getenv(block["api_key_env"]) or None,
                **{k: float(http_config[k]) for k in timeout_keys if k in http_config},
            )

        return result

    def get_relay_options(self) -> RelayOptions:
        """Get relay session options from YAML.

        Returns:
            RelayOptions with validated values.

        Raises:
            ValueError: If required relay parameters are missing or invalid.
        """
        relay_config = self._config.get("relay", {})

        required_keys = [
            "min_delay_ms", "keepalive_interval", "first_chunk_timeout", "queue_size"
        ]
        for key in required_keys:
            if key not in relay_config:
                raise ValueError(
                    f"relay.{key} must be explicitly configured in config.yaml"
                )

        return RelayOptions(
            min_delay_ms=relay_config["min_delay_ms"],
            keepalive_interval=relay_config["keepalive_interval"],
            keepalive_text=relay_config.get("keepalive_text", "keepalive"),
            first_chunk_timeout=relay_config["first_chunk_timeout"],
            queue_size=relay_config["queue_size"],
        )

    def get_mock_gap(self) -> float:
        """Seconds between words streamed by the mock provider."""
        gap = self._config.get("llm", {}).get("mock", {}).get("gap", 0.0)
        if gap < 0:
            raise ValueError("llm.mock.gap must be non-negative")
        return float(gap)

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration from YAML.

        Raises:
            ValueError: If required server parameters are missing.
        """
        server_config = self._config.get("server", {})
        for key in ["host", "port"]:
            if key not in server_config:
                raise ValueError(
                    f"server.{key} must be explicitly configured in config.yaml"
                )
        return {
            "host": server_config["host"],
            "port": int(server_config["port"]),
            "log_level": server_config.get("log_level", "info"),
        }

    def get_transcript_store_config(self) -> dict[str, Any]:
        """Get transcript store configuration from YAML.

        Raises:
            ValueError: If required store parameters are missing.
        """
        store_config = self._config.get("transcripts", {})
        for key in ["path", "enabled"]:
            if key not in store_config:
                raise ValueError(
                    f"transcripts.{key} must be explicitly configured in config.yaml"
                )
        # Create new dictionary without mutating the original
        return {**store_config}

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})
