from .config_parser import build_config, parse_config_files
from .config_schema import AppConfig, parse_duration

__all__ = ["AppConfig", "build_config", "parse_config_files", "parse_duration"]
