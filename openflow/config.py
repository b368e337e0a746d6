"""Centralised settings for the OpenFlow builder core.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("OPENFLOW_WORKSPACE", Path.home() / ".openflow_data")
        )
    )
    db_busy_timeout: float = field(
        default_factory=lambda: float(os.environ.get("DB_BUSY_TIMEOUT", "5.0"))
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite database file."""
        return self.workspace_dir / "builder.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    @property
    def cli_config_dir(self) -> Path:
        """Directory holding the CLI's persisted context."""
        return self.workspace_dir / "cli"

    # ------------------------------------------------------------------
    # Element store limits
    # ------------------------------------------------------------------
    max_tree_depth: int = field(
        default_factory=lambda: int(os.environ.get("MAX_TREE_DEPTH", "100"))
    )
    max_batch_size: int = field(
        default_factory=lambda: int(os.environ.get("MAX_BATCH_SIZE", "1000"))
    )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    transaction_max_retries: int = field(
        default_factory=lambda: int(os.environ.get("TRANSACTION_MAX_RETRIES", "3"))
    )
    transaction_backoff: float = field(
        default_factory=lambda: float(os.environ.get("TRANSACTION_BACKOFF", "0.1"))
    )
    transaction_timeout: float = field(
        default_factory=lambda: float(os.environ.get("TRANSACTION_TIMEOUT", "30.0"))
    )

    # ------------------------------------------------------------------
    # Outbound calls: retry + circuit breaker
    # ------------------------------------------------------------------
    retry_max_attempts: int = field(
        default_factory=lambda: int(os.environ.get("RETRY_MAX_ATTEMPTS", "3"))
    )
    retry_initial_delay: float = field(
        default_factory=lambda: float(os.environ.get("RETRY_INITIAL_DELAY", "1.0"))
    )
    retry_max_delay: float = field(
        default_factory=lambda: float(os.environ.get("RETRY_MAX_DELAY", "30.0"))
    )
    retry_timeout: float = field(
        default_factory=lambda: float(os.environ.get("RETRY_TIMEOUT", "30.0"))
    )
    breaker_failure_threshold: int = field(
        default_factory=lambda: int(os.environ.get("BREAKER_FAILURE_THRESHOLD", "3"))
    )
    breaker_success_threshold: int = field(
        default_factory=lambda: int(os.environ.get("BREAKER_SUCCESS_THRESHOLD", "2"))
    )
    breaker_reset_timeout: float = field(
        default_factory=lambda: float(os.environ.get("BREAKER_RESET_TIMEOUT", "60.0"))
    )

    # ------------------------------------------------------------------
    # Chat / reasoning model
    # ------------------------------------------------------------------
    llm_provider: str = field(
        default_factory=lambda: os.environ.get("LLM_PROVIDER", "ollama")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_chat_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_CHAT_MODEL", "ministral-3:8b")
    )
    openai_chat_model: str = field(
        default_factory=lambda: os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    )
    llm_temperature: float = field(
        default_factory=lambda: float(os.environ.get("LLM_TEMPERATURE", "0.7"))
    )
    llm_history_limit: int = field(
        default_factory=lambda: int(os.environ.get("LLM_HISTORY_LIMIT", "10"))
    )

    # ------------------------------------------------------------------
    # Image generation (<nano:...> directives)
    # ------------------------------------------------------------------
    image_provider: str = field(
        default_factory=lambda: os.environ.get("IMAGE_PROVIDER", "pollinations")
    )
    image_api_url: str = field(
        default_factory=lambda: os.environ.get("IMAGE_API_URL", "")
    )
    image_api_key: str = field(
        default_factory=lambda: os.environ.get("IMAGE_API_KEY", "")
    )
    image_width: int = field(
        default_factory=lambda: int(os.environ.get("IMAGE_WIDTH", "1024"))
    )
    image_height: int = field(
        default_factory=lambda: int(os.environ.get("IMAGE_HEIGHT", "600"))
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton, import this everywhere:
#   from openflow.config import settings
settings = Settings()
