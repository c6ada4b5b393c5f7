from pydantic_settings import BaseSettings
from pydantic import Field
import os


class Settings(BaseSettings):
    app_name: str = "Tarifas API"
    debug: bool = True
    log_level: str = "INFO"
    database_url: str = Field(
        default_factory=lambda: f"sqlite:///"
        + os.path.abspath("backend/data/tarifas.sqlite3")
    )

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    settings = Settings()
    if settings.database_url.startswith("sqlite:///"):
        db_dir = os.path.dirname(settings.database_url.replace("sqlite:///", ""))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
    return settings
