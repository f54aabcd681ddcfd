"""
ohmage Pipeline Package
Validation, deduplication, roll-up and export of mobile survey responses
"""

__version__ = "1.0.0"

from .config import load_config
from .utils import setup_logging, get_project_root

__all__ = [
    "load_config",
    "setup_logging",
    "get_project_root"
]
