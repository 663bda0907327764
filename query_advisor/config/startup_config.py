"""
Startup configuration for the SQL Query Advisor
Merges config.json (optional) with environment overrides
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional

from query_advisor.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
SECONDS_PER_DAY = 86400


class StartupConfig:
    """
    Configuration manager for the advisor API, CLI and engine client
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the startup configuration

        Args:
            config_path: Path to a config.json file. When omitted the usual
                locations are searched and defaults apply if none exists.
        """
        if config_path and not Path(config_path).exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        self.config_path = config_path or self._find_config_file()
        self.config = self._load_config()

    def _find_config_file(self) -> Optional[str]:
        """Find config.json in the working directory or the project root"""
        config_locations = [
            Path.cwd() / "config.json",
            Path(__file__).parent.parent.parent / "config.json",
        ]

        for config_path in config_locations:
            if config_path.exists():
                return str(config_path)

        return None

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        if not self.config_path:
            logger.info("No config.json found, using defaults")
            return {}
        try:
            with open(self.config_path, 'r') as f:
                config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Failed to load configuration from {self.config_path}", {"cause": str(e)}) from e

        if not isinstance(config, dict):
            raise ConfigurationError(f"Configuration in {self.config_path} must be a JSON object")
        logger.info(f"Configuration loaded from: {self.config_path}")
        return config

    # API Configuration
    @property
    def api_config(self) -> Dict[str, Any]:
        return self.config.get("api", {})

    @property
    def api_host(self) -> str:
        return self.api_config.get("host", "127.0.0.1")

    @property
    def api_port(self) -> int:
        return int(self.api_config.get("port", 8000))

    @property
    def api_title(self) -> str:
        return self.api_config.get("title", "SQL Query Advisor")

    @property
    def cors_origins(self) -> List[str]:
        """Allowed CORS origins; CORS_ORIGINS is a comma separated list"""
        env_origins = os.getenv("CORS_ORIGINS")
        if env_origins:
            return [origin.strip() for origin in env_origins.split(",") if origin.strip()]
        return self.api_config.get("cors_origins", ["*"])

    # LLM Configuration
    @property
    def llm_config(self) -> Dict[str, Any]:
        return self.config.get("llm", {})

    @property
    def llm_model(self) -> str:
        return os.getenv("ADVISOR_MODEL") or self.llm_config.get("model", "gpt-4o-mini")

    @property
    def llm_temperature(self) -> float:
        return float(self.llm_config.get("temperature", 0.3))

    @property
    def llm_timeout_seconds(self) -> float:
        return float(self.llm_config.get("timeout_seconds", 60))

    @property
    def llm_base_url(self) -> Optional[str]:
        return os.getenv("OPENAI_BASE_URL") or self.llm_config.get("base_url")

    @property
    def openai_api_key(self) -> Optional[str]:
        """Only ever read from the environment"""
        return os.getenv("OPENAI_API_KEY") or None

    @property
    def engine_configured(self) -> bool:
        return bool(self.openai_api_key)

    # Free-analysis admission
    @property
    def admission_config(self) -> Dict[str, Any]:
        return self.config.get("admission", {})

    @property
    def admission_backend(self) -> str:
        backend = os.getenv("ADMISSION_BACKEND") or self.admission_config.get("backend", "memory")
        return backend.strip().lower()

    @property
    def redis_url(self) -> str:
        return os.getenv("REDIS_URL") or self.admission_config.get("redis_url", "redis://localhost:6379/0")

    @property
    def admission_ttl_seconds(self) -> Optional[int]:
        """None means admissions are remembered forever"""
        ttl_days = self.admission_config.get("ttl_days")
        if ttl_days is None:
            return None
        return int(float(ttl_days) * SECONDS_PER_DAY)

    # Authentication
    @property
    def api_tokens(self) -> Dict[str, str]:
        """
        Map of user id -> bearer token.

        QUERY_ADVISOR_API_TOKENS ("alice:token1,bob:token2") replaces the
        auth.api_tokens section of config.json.
        """
        env_tokens = os.getenv("QUERY_ADVISOR_API_TOKENS")
        if env_tokens is None:
            return dict(self.config.get("auth", {}).get("api_tokens", {}))

        tokens = {}
        for entry in env_tokens.split(","):
            user_id, sep, token = entry.strip().partition(":")
            if not sep or not user_id or not token:
                if entry.strip():
                    logger.warning("Ignoring malformed entry in QUERY_ADVISOR_API_TOKENS")
                continue
            tokens[user_id] = token
        return tokens

    # Logging
    @property
    def logging_config(self) -> Dict[str, Any]:
        return self.config.get("logging", {})

    @property
    def logging_level(self) -> str:
        return (os.getenv("LOG_LEVEL") or self.logging_config.get("level", "INFO")).upper()

    @property
    def logging_format(self) -> str:
        return self.logging_config.get("format", DEFAULT_LOG_FORMAT)

    def configure_logging(self):
        logging.basicConfig(
            level=getattr(logging, self.logging_level, logging.INFO),
            format=self.logging_format,
        )

    def get_startup_summary(self) -> str:
        """Get a summary of startup configuration"""
        summary = []
        summary.append("=== SQL Query Advisor Configuration ===")
        summary.append(f"Config file: {self.config_path or 'defaults'}")
        summary.append(f"API: {self.api_host}:{self.api_port}")
        summary.append(f"Advisor model: {self.llm_model} (engine {'configured' if self.engine_configured else 'not configured'})")
        summary.append(f"Admission backend: {self.admission_backend}")
        if self.admission_backend == "redis":
            summary.append(f"Redis URL: {self.redis_url}")
        summary.append(f"API tokens: {len(self.api_tokens)}")
        return "\n".join(summary)


# Global configuration instance
startup_config = None


def get_startup_config(config_path: Optional[str] = None) -> StartupConfig:
    """Get or create the global startup configuration instance"""
    global startup_config

    if startup_config is None:
        startup_config = StartupConfig(config_path)

    return startup_config


def reset_startup_config():
    global startup_config
    startup_config = None
