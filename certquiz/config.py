import logging
import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    debug: bool
    pass_percentage: int
    default_question_count: int


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("CERTQUIZ_DATABASE_URL", "sqlite:///./certquiz.db"),
        log_level=os.getenv("CERTQUIZ_LOG_LEVEL", "INFO").upper(),
        debug=_env_flag("CERTQUIZ_DEBUG"),
        pass_percentage=int(os.getenv("CERTQUIZ_PASS_PERCENTAGE", "80")),
        default_question_count=int(os.getenv("CERTQUIZ_DEFAULT_QUESTION_COUNT", "10")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(settings: Settings) -> logging.Logger:
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logger = logging.getLogger("certquiz")
    logger.setLevel(level)
    return logger
