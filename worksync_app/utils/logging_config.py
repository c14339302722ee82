"""
Application logging setup driven by the ``LOG_*`` / ``ENABLE_*_LOGGING`` settings.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"


def setup_logging(app):
    """
    Attach console and rotating-file handlers to ``app.logger``.

    Calling this again replaces the handlers installed by a previous call.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in list(app.logger.handlers):
        if getattr(handler, "_worksync_handler", False):
            app.logger.removeHandler(handler)
            handler.close()

    handlers = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, "worksync.log"),
                maxBytes=app.config.get("LOG_FILE_MAX_BYTES", 10485760),
                backupCount=app.config.get("LOG_FILE_BACKUP_COUNT", 10),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        handler._worksync_handler = True
        app.logger.addHandler(handler)

    app.logger.setLevel(level)
    logging.getLogger("worksync_app").setLevel(level)
    return app.logger
