from __future__ import annotations
import logging
import logging.config
from pathlib import Path
from typing import Optional
import yaml

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(config_path: str = "configs/logging.yaml", level: Optional[str] = None) -> None:
    """Setup logging configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        # Safe fallback
        logging.basicConfig(level=(level or "INFO").upper(), format=DEFAULT_FORMAT)
        return

    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    logging.config.dictConfig(cfg)

    if level:
        logging.getLogger("resilient_http").setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
