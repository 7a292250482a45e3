from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./kaskrout.db"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    token_ttl_hours: int = 168
    bcrypt_rounds: int = 10
    allow_registration: bool = True
    cors_origins: list[str] = ["*"]
    admin_name: str = "admin"
    admin_password: str | None = None

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", case_sensitive=False)


settings = Settings()
