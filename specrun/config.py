from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Logging
    debug: bool = False
    json_logs: bool = False

    # Execution
    default_timeout_ms: int = 60_000
    strict_validation: bool = False  # unknown condition types fail instead of pass
    stop_on_failure: bool = False

    # Plugins -- scanned after the built-in plugin directory
    plugin_dirs: list[str] = []

    # Evidence
    evidence_directory: str = "evidence"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_prefix="SPECRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
