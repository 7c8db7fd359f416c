from voicerelay.utils.config import Config, load_config, get_default_config_yaml
from voicerelay.utils.logger import setup_logging, get_logger
from voicerelay.utils import errors

__all__ = [
    "Config",
    "load_config",
    "get_default_config_yaml",
    "setup_logging",
    "get_logger",
    "errors",
]
