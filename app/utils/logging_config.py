from logging.config import dictConfig

from app.config import Settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(settings: Settings):
    """Console logging for the service.

    Requests are logged by the messaging middleware, so uvicorn's access log is
    turned down. SQL statements are only logged when ``sql_echo`` is set.
    """
    level = settings.log_level.upper()
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": LOG_FORMAT,
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "app": {"level": level},
                "uvicorn.access": {"level": "WARNING"},
                "sqlalchemy.engine": {"level": "INFO" if settings.sql_echo else "WARNING"},
            },
            "root": {
                "level": level,
                "handlers": ["console"],
            },
        }
    )
