from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = "sqlite:///./examai.db"
    log_level: str = "INFO"

    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:latest"
    llm_temperature: float = 0.1
    llm_max_output_tokens: int = 4096
    llm_request_timeout_seconds: float = 300.0
    extraction_max_retries: int = 1
    extraction_retry_delay_seconds: float = 0.5

    llama_cloud_api_key: str | None = None
    allowed_origins: str = "*"
    max_upload_size_mb: int = 20


settings = Settings()
