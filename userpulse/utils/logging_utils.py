import logging
import logging.config
from pathlib import Path
from typing import Optional

import yaml

from ..config.settings import settings

DEFAULT_LOGGING_CONFIG_PATH = Path(settings.LOGGING_CONFIG_PATH)


def setup_logging(config_path: Optional[Path] = None, level: Optional[str] = None) -> None:
    """
    Set up logging configuration from a YAML file.

    Args:
        config_path (Path): Path to the logging configuration YAML file.
        level (str): Optional level override applied to the ``userpulse`` logger.
    """
    config_path = Path(config_path) if config_path else DEFAULT_LOGGING_CONFIG_PATH
    if config_path.exists():
        try:
            with open(config_path, 'rt') as f:
                log_config = yaml.safe_load(f.read())
            logging.config.dictConfig(log_config)
            logging.getLogger(__name__).debug(f"Logging configured successfully from {config_path}")
        except Exception as e:
            logging.basicConfig(level=logging.INFO)  # Basic config as fallback
            logging.error(f"Error loading logging configuration from {config_path}: {e}. Using basicConfig.")
    else:
        logging.basicConfig(level=logging.INFO)
        logging.warning(f"Logging configuration file not found at {config_path}. Using basicConfig.")

    if level:
        logging.getLogger("userpulse").setLevel(level.upper())
    elif settings.DEBUG:
        logging.getLogger("userpulse").setLevel(logging.DEBUG)
