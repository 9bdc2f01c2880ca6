"""
Configuración de logging.

Un único punto de configuración al arrancar; el resto del código
solo usa logging.getLogger(__name__).
"""

import logging
import logging.config

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"handlers": ["console"], "level": level.upper()},
            "loggers": {
                # SQL solo con DEBUG=true (echo del engine)
                "sqlalchemy.engine": {"level": "WARNING"},
                "passlib": {"level": "ERROR"},
            },
        }
    )
