"""
config.py - Configuration Management for VoiceRelay

Handles YAML configuration with environment variable overrides.
Supports: local development and production server.
"""

import os
import re
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

# ============================================================================
# Environment Detection
# ============================================================================


class Environment:
    """Detect runtime environment."""

    @staticmethod
    def is_production() -> bool:
        return os.environ.get("VR_ENV", "development").lower() == "production"

    @staticmethod
    def get_mode() -> str:
        if Environment.is_production():
            return "production"
        return "development"


# ============================================================================
# Data Classes
# ============================================================================

DEFAULT_FAST_ACK_PROMPT = (
    "You are a voice assistant's conversational front. "
    "Give immediate, warm acknowledgments in one or two sentences suitable "
    "for speech. When the user asks for file operations, code execution or "
    "other tasks, say that you are taking care of it; a background agent "
    "does the actual work."
)

DEFAULT_AGENT_PROMPT_APPEND = (
    "You are a helpful voice assistant. Keep responses concise and "
    "conversational for voice output."
)


@dataclass
class ServerConfig:
    """WebSocket server configuration."""
    host: str = "127.0.0.1"
    port: int = 3001
    max_connections: int = 1000
    max_idle_users: int = 1000  # disconnected users kept for reconnects
    max_message_size: int = 10 * 1024 * 1024  # 10MB, audio frames
    ping_interval: int = 20
    ping_timeout: int = 20
    shutdown_grace_seconds: float = 30.0


@dataclass
class FastAckConfig:
    """Fast acknowledgment chat model (OpenAI compatible, Groq by default)."""
    api_key: str = ""
    base_url: str = "https://api.groq.com/openai/v1"
    model: str = "llama-3.3-70b-versatile"
    temperature: float = 0.7
    max_tokens: int = 1024
    history_size: int = 10
    system_prompt: str = DEFAULT_FAST_ACK_PROMPT
    timeout: float = 30.0


@dataclass
class TranscriptionConfig:
    """Speech-to-text (OpenAI compatible transcription endpoint)."""
    api_key: str = ""
    base_url: str = "https://api.groq.com/openai/v1"
    model: str = "whisper-large-v3-turbo"
    language: str = "en"
    temperature: float = 0.0
    filename: str = "audio.webm"
    content_type: str = "audio/webm"
    timeout: float = 60.0


@dataclass
class SynthesisConfig:
    """Text-to-speech (OpenAI compatible speech endpoint)."""
    enabled: bool = True
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "tts-1"
    voice: str = "nova"
    speed: float = 1.0
    timeout: float = 60.0


@dataclass
class AgentConfig:
    """Tool-executing agent."""
    enabled: bool = True
    permission_mode: str = "acceptEdits"
    allowed_tools: List[str] = field(default_factory=lambda: [
        "Read", "Write", "Edit", "Glob", "Grep", "Bash", "TodoWrite"
    ])
    max_turns: int = 10
    timeout_seconds: float = 300.0
    system_prompt_append: str = DEFAULT_AGENT_PROMPT_APPEND
    setting_sources: List[str] = field(default_factory=lambda: ["project"])
    model: str = ""


@dataclass
class WorkspaceConfig:
    """Per-user sandbox directories."""
    root: str = ""


@dataclass
class StoreConfig:
    """SQLite persistence of user state."""
    enabled: bool = True
    db_path: str = ""


@dataclass
class Config:
    """Main configuration container."""
    server: ServerConfig = field(default_factory=ServerConfig)
    fast_ack: FastAckConfig = field(default_factory=FastAckConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    # Runtime
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    data_dir: str = ""
    logs_directory: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        return _dict_to_dataclass(cls, data)

    def missing_api_keys(self) -> List[str]:
        """Names of provider keys that are not configured."""
        missing = []
        if not self.fast_ack.api_key:
            missing.append("GROQ_API_KEY (fast_ack)")
        if not self.transcription.api_key:
            missing.append("GROQ_API_KEY (transcription)")
        if self.synthesis.enabled and not self.synthesis.api_key:
            missing.append("OPENAI_API_KEY (synthesis)")
        if self.agent.enabled and not os.environ.get("ANTHROPIC_API_KEY"):
            missing.append("ANTHROPIC_API_KEY (agent)")
        return missing


# ============================================================================
# Configuration Loading
# ============================================================================

_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}')

_INT_KEYS = {"port", "max_connections", "max_turns", "history_size", "max_tokens"}
_BOOL_KEYS = {"debug", "enabled"}


def _resolve_env_vars(obj: Any) -> Any:
    """Resolve ${ENV_VAR} and ${ENV_VAR:default} patterns in configuration."""
    if isinstance(obj, str):
        def replacer(match):
            env_var = match.group(1)
            default = ""
            if ":" in env_var:
                env_var, default = env_var.split(":", 1)
            return os.environ.get(env_var, default)

        return _ENV_PATTERN.sub(replacer, obj)
    elif isinstance(obj, dict):
        return {k: _resolve_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_env_vars(v) for v in obj]
    return obj


def _dict_to_dataclass(cls, data: dict) -> Any:
    """Convert dict to dataclass recursively."""
    if not data:
        return cls()

    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        default = f.default_factory() if callable(f.default_factory) else None
        if is_dataclass(default) and isinstance(value, dict):
            kwargs[f.name] = _dict_to_dataclass(type(default), value)
        else:
            kwargs[f.name] = value

    return cls(**kwargs)


def _convert(key: str, value: str) -> Any:
    if key in _INT_KEYS:
        try:
            return int(value)
        except ValueError as e:
            raise ConfigError(f"{key} must be an integer, got {value!r}") from e
    if key in _BOOL_KEYS:
        return value.lower() in ("true", "1", "yes")
    return value


ENV_MAPPING = {
    "VR_ENV": ("environment",),
    "VR_DEBUG": ("debug",),
    "VR_LOG_LEVEL": ("log_level",),
    "VR_DATA_DIR": ("data_dir",),
    # Server
    "VR_HOST": ("server", "host"),
    "VR_PORT": ("server", "port"),
    # Providers
    "GROQ_API_KEY": [("fast_ack", "api_key"), ("transcription", "api_key")],
    "OPENAI_API_KEY": ("synthesis", "api_key"),
    # Agent
    "VR_AGENT_MAX_TURNS": ("agent", "max_turns"),
    # Workspace
    "VR_WORKSPACE_ROOT": ("workspace", "root"),
}


def _apply_env_overrides(config_data: dict):
    for env_var, paths in ENV_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None or value == "":
            continue
        if isinstance(paths, tuple):
            paths = [paths]
        for path in paths:
            current = config_data
            for key in path[:-1]:
                if not isinstance(current.get(key), dict):
                    current[key] = {}
                current = current[key]
            current[path[-1]] = _convert(path[-1], value)


def load_config(
    config_path: Optional[str] = None,
    env_overrides: bool = True,
    dotenv: bool = True,
) -> Config:
    """
    Load configuration from YAML file with environment overrides.

    Search order:
    1. Explicit config_path
    2. VR_CONFIG environment variable
    3. ./voicerelay.yaml
    4. ~/.voicerelay/config.yaml
    5. /etc/voicerelay/config.yaml

    Args:
        config_path: Explicit path to config file
        env_overrides: Apply environment variable overrides
        dotenv: Load a .env file from the working directory first

    Returns:
        Config dataclass
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))

    search_paths = []

    if config_path:
        if not os.path.exists(config_path):
            raise ConfigError(f"Config file not found: {config_path}")
        search_paths.append(config_path)

    if os.environ.get("VR_CONFIG"):
        search_paths.append(os.environ["VR_CONFIG"])

    search_paths.extend([
        "./voicerelay.yaml",
        str(Path.home() / ".voicerelay" / "config.yaml"),
        "/etc/voicerelay/config.yaml",
    ])

    config_data: Dict[str, Any] = {}

    for path in search_paths:
        if os.path.exists(path):
            with open(path) as f:
                try:
                    config_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {path}: {e}") from e
            break

    if not isinstance(config_data, dict):
        raise ConfigError("Top level of the config file must be a mapping")

    config_data = _resolve_env_vars(config_data)

    if env_overrides:
        _apply_env_overrides(config_data)

    env_mode = config_data.get("environment") or Environment.get_mode()
    config_data["environment"] = env_mode

    if env_mode == "development":
        config_data.setdefault("debug", True)
        config_data.setdefault("log_level", "DEBUG")

    elif env_mode == "production":
        config_data.setdefault("debug", False)
        config_data.setdefault("log_level", "INFO")
        if not config_data.get("fast_ack", {}).get("api_key"):
            raise ConfigError("GROQ_API_KEY must be set in production!")

    # Set data directory
    if not config_data.get("data_dir"):
        config_data["data_dir"] = str(Path.home() / ".voicerelay")

    data_dir = Path(config_data["data_dir"]).expanduser()
    config_data["data_dir"] = str(data_dir)

    # Set derived paths
    if not config_data.get("logs_directory"):
        config_data["logs_directory"] = str(data_dir / "logs")

    if not config_data.get("workspace", {}).get("root"):
        config_data.setdefault("workspace", {})["root"] = str(data_dir / "workspace")

    if not config_data.get("store", {}).get("db_path"):
        config_data.setdefault("store", {})["db_path"] = str(data_dir / "voicerelay.db")

    return _dict_to_dataclass(Config, config_data)


def get_default_config_yaml() -> str:
    """Generate default configuration YAML with comments."""
    return '''# VoiceRelay Configuration
# Environment variables can be used: ${VAR_NAME} or ${VAR_NAME:default}

# Runtime environment: development, production
environment: "${VR_ENV:development}"
debug: false
log_level: "INFO"
data_dir: "${VR_DATA_DIR:}"

# WebSocket server
server:
  host: "127.0.0.1"
  port: 3001
  max_connections: 1000
  max_idle_users: 1000
  max_message_size: 10485760  # 10MB
  ping_interval: 20
  ping_timeout: 20
  shutdown_grace_seconds: 30

# Fast acknowledgment model (OpenAI compatible chat completions)
fast_ack:
  api_key: "${GROQ_API_KEY:}"
  base_url: "https://api.groq.com/openai/v1"
  model: "llama-3.3-70b-versatile"
  temperature: 0.7
  max_tokens: 1024
  history_size: 10
  timeout: 30

# Speech-to-text
transcription:
  api_key: "${GROQ_API_KEY:}"
  base_url: "https://api.groq.com/openai/v1"
  model: "whisper-large-v3-turbo"
  language: "en"
  temperature: 0.0
  filename: "audio.webm"
  content_type: "audio/webm"
  timeout: 60

# Text-to-speech
synthesis:
  enabled: true
  api_key: "${OPENAI_API_KEY:}"
  base_url: "https://api.openai.com/v1"
  model: "tts-1"
  voice: "nova"
  speed: 1.0
  timeout: 60

# Tool-executing agent (reads ANTHROPIC_API_KEY from the environment)
agent:
  enabled: true
  permission_mode: "acceptEdits"
  allowed_tools: [Read, Write, Edit, Glob, Grep, Bash, TodoWrite]
  max_turns: 10
  timeout_seconds: 300
  setting_sources: [project]

# Per-user sandboxes
workspace:
  root: "${VR_WORKSPACE_ROOT:}"

# User state persistence
store:
  enabled: true
  db_path: ""
'''
