import logging
from enum import Enum

LOG_FORMAT_DEBUG = (
    "%(asctime)s %(levelname)s:%(pathname)s:%(funcName)s:%(lineno)d: %(message)s"
)

# third-party loggers that are chatty at DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "PIL", "aiosqlite")


class LogLevels(Enum):
    info = "INFO"
    warn = "WARNING"
    error = "ERROR"
    debug = "DEBUG"


def configure_logging(log_level: LogLevels | str):
    """
    Configure the root logger for the service.

    Unknown levels fall back to ERROR.
    """
    level_name = str(getattr(log_level, "value", log_level)).upper()
    if level_name == "WARN":
        level_name = LogLevels.warn.value
    valid_levels = {level.value for level in LogLevels}

    if level_name not in valid_levels:
        print(
            f"Invalid log level: '{level_name}'. "
            f"Valid levels are: {sorted(valid_levels)}"
        )
        level_name = LogLevels.error.value

    print(f"Configuring logging with level: {level_name}")
    logging.basicConfig(level=level_name, format=LOG_FORMAT_DEBUG)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
