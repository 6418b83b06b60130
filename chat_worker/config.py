"""Configuration management using pydantic-settings."""

import shlex
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3001, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    cors_origins: str = Field(
        default=(
            "http://localhost:5173,http://localhost:5174,http://localhost:3000,"
            "http://127.0.0.1:5173,http://127.0.0.1:5174"
        ),
        description="Allowed CORS origins (comma separated)"
    )

    # Transcript Storage
    history_dir: str = Field(default="./.chat-history", description="Directory holding conversation files")
    default_title: str = Field(default="New Conversation", description="Title of a conversation before its first user message")
    title_max_length: int = Field(default=50, description="Maximum length of a derived title")

    # Assistant CLI Configuration
    assistant_binary: str = Field(default="claude", description="Assistant binary path")
    assistant_args: str = Field(
        default="--print --output-format text --dangerously-skip-permissions",
        description="Arguments passed to the assistant binary"
    )
    default_working_directory: Optional[str] = Field(default=None, description="Fallback working directory for invocations")
    response_timeout: float = Field(default=900, description="Hard timeout per invocation in seconds")
    terminate_grace_period: float = Field(default=5.0, description="Seconds to wait after SIGTERM before SIGKILL")
    output_chunk_size: int = Field(default=4096, description="Read size for assistant stdout")
    honor_partial_output: bool = Field(default=True, description="Treat non-empty output of a failed process as a reply")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_file: str = Field(default="./logs/app.log", description="Log file path")
    log_max_bytes: int = Field(default=2_000_000, description="Log file size before rotation")
    log_backup_count: int = Field(default=5, description="Rotated log files kept")

    def get_assistant_command(self) -> List[str]:
        """Get the assistant command line as an argument list."""
        return [self.assistant_binary, *shlex.split(self.assistant_args)]

    def get_cors_origins(self) -> List[str]:
        """Get list of allowed CORS origins."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
