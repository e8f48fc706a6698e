"""
Configuration loading and validation for the chatstream client.
Reads config/client.yaml into pydantic models and applies environment overrides.
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from exceptions import ConfigValidationError


CLIENT_CONFIG_FILE = "client.yaml"

ENV_OVERRIDES = {
    "CHATSTREAM_BASE_URL": ("transport", "base_url"),
    "CHATSTREAM_USER_ID": ("session", "user_id"),
    "CHATSTREAM_SESSION_ID": ("session", "session_id"),
}


class TransportConfig(BaseModel):
    """HTTP transport settings for the streaming chat endpoint."""
    base_url: str = "http://localhost:8080"
    chat_path: str = "/api/chat"
    timeout_seconds: float = 30.0
    max_retries: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=0.5, ge=0.0)
    exponential_base: float = Field(default=2.0, ge=1.0)
    max_wait_seconds: float = Field(default=30.0, gt=0.0)


class SessionConfig(BaseModel):
    """Default identity attached to outbound prompts."""
    session_id: str = "default"
    user_id: str = "anonymous"


class RecordingConfig(BaseModel):
    """Stream recording settings (JSONL of classified events)."""
    enabled: bool = False
    directory: str = "recordings"


class ArtifactsConfig(BaseModel):
    """Artifact persistence settings."""
    persist_directory: Optional[str] = None


class ClientConfig(BaseModel):
    """Top-level client configuration."""
    transport: TransportConfig = Field(default_factory=TransportConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)
    log_level: str = "INFO"

    @property
    def chat_url(self) -> str:
        return self.transport.base_url.rstrip("/") + "/" + self.transport.chat_path.lstrip("/")


class ConfigLoader:
    """Loads and validates the client configuration file."""

    def __init__(self, config_root: str = "./config", environ: Optional[Dict[str, str]] = None):
        self.config_root = Path(config_root)
        self.environ = os.environ if environ is None else environ
        self._client_config: Optional[ClientConfig] = None

    @property
    def config_path(self) -> Path:
        return self.config_root / CLIENT_CONFIG_FILE

    def load_client_config(self, required: bool = False) -> ClientConfig:
        """
        Load client.yaml, apply environment overrides and validate.

        A missing file yields defaults unless ``required`` is set.
        """
        if self._client_config is not None:
            return self._client_config

        config_data: Dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    config_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Invalid YAML in {self.config_path}: {e}")
            if not isinstance(config_data, dict):
                raise ConfigValidationError(f"Client config in {self.config_path} must be a mapping")
        elif required:
            raise ConfigValidationError(f"Client config not found: {self.config_path}")

        config_data = self._apply_env_overrides(config_data)

        try:
            self._client_config = ClientConfig(**config_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid client config in {self.config_path}: {e}")
        return self._client_config

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(config_data)
        for env_var, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(env_var)
            if not value:
                continue
            section_data = dict(merged.get(section) or {})
            section_data[key] = value
            merged[section] = section_data
        return merged

    def validate_all_configs(self) -> bool:
        """Validate the client configuration; the file must exist."""
        self._client_config = None
        self.load_client_config(required=True)
        return True


def load_config(config_root: str = "./config") -> ClientConfig:
    """Load client configuration from a config directory."""
    return ConfigLoader(config_root).load_client_config()
