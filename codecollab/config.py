# codecollab/config.py
import sys
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Core
    app_name: str = "CodeCollab"
    debug: bool = False

    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # Frontend dev server by default
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    # WebSocket
    WS_HEARTBEAT_INTERVAL: int = 30   # seconds
    WS_CONNECTION_TIMEOUT: int = 300  # seconds
    OUTBOX_MAX_SIZE: int = 256        # queued frames per connection before dropping

    # Rate Limiting (editor sends one frame per keystroke)
    RATE_LIMIT_PER_MINUTE: int = 1200

    # Payload Limits
    MAX_MESSAGE_LENGTH: int = 4000
    MAX_CODE_LENGTH: int = 200_000
    MAX_NAME_LENGTH: int = 64

    # Code execution
    COMPILE_TIMEOUT: float = 5.0  # seconds
    PYTHON_EXECUTABLE: str = Field(default_factory=lambda: sys.executable)
    NODE_EXECUTABLE: str = "node"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )


settings = Settings()
