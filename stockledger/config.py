from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    DB_URL: str = "sqlite:///./stockledger.db"
    DB_ECHO: bool = False
    LOCK_TIMEOUT_MS: int = 5000
    STATEMENT_TIMEOUT_MS: int = 30000
    LOG_LEVEL: str = "INFO"
    SLIP_NO_ATTEMPTS: int = 5
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
