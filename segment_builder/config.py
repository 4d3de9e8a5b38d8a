from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pathlib import Path


class BackendSettings(BaseSettings):
    """Segment storage and matching service connection"""
    model_config = SettingsConfigDict(env_prefix="BACKEND_")

    API_URL: str = "http://localhost:4000/api/v1"
    TIMEOUT_SECONDS: float = 30.0
    API_TOKEN: Optional[str] = None


class PreviewSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PREVIEW_")

    # Quiet window before an edit triggers an evaluation call
    DEBOUNCE_MS: int = 500
    SAMPLE_SIZE: int = 5


class EditorSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="EDITOR_")

    # Idle editing sessions are dropped after this long
    SESSION_TTL_SECONDS: int = 3600


class LocalMatchingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOCAL_")

    CUSTOMERS_FILE: str = "data/customers.jsonl"


class LoggingSettings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DIR: str = "logs"
    ENABLE_FILE_LOGGING: bool = True
    ENABLE_CONSOLE_LOGGING: bool = True
    MAX_LOG_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    MAX_LOG_FILE_COUNT: int = 5


class Settings(BaseSettings):
    # Base settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Segment Builder API"
    DEBUG: bool = False

    # CORS settings
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # "remote" calls the backend matching service, "local" evaluates a customer snapshot
    MATCHING_BACKEND: str = "remote"

    # Sub-configurations
    backend: BackendSettings = BackendSettings()
    preview: PreviewSettings = PreviewSettings()
    editor: EditorSettings = EditorSettings()
    local: LocalMatchingSettings = LocalMatchingSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._create_directories()

    def _create_directories(self):
        """Create necessary directories"""
        if self.logging.ENABLE_FILE_LOGGING:
            Path(self.logging.LOG_DIR).mkdir(parents=True, exist_ok=True)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.DEBUG

    @property
    def debounce_seconds(self) -> float:
        return self.preview.DEBOUNCE_MS / 1000.0

    def get_log_file(self, name: str) -> str:
        """Get log file path for a named logger"""
        return str(Path(self.logging.LOG_DIR) / f"{name}.log")


# Initialize settings
settings = Settings()
