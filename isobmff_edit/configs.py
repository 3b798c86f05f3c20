import logging

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = "INFO"  # The logging level to use.
    edit_list_prefer_version_0: bool = True  # Whether make_entry picks the 32-bit entry layout when values fit.

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging with the package format, defaulting to settings.log_level."""
    logging.basicConfig(
        level=level or settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
