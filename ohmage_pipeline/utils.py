"""
Utility functions for the ohmage pipeline
"""

import logging
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import sys

def get_project_root() -> Path:
    """Get the project root directory"""
    return Path(__file__).parent.parent

def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        format_string: Optional custom format string

    Returns:
        Configured logger
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True
    )

    # Add file handler if specified
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(format_string))
        logging.getLogger().addHandler(file_handler)

    return logging.getLogger(__name__)

def create_run_timestamp() -> str:
    """Create a standardized timestamp for pipeline runs"""
    return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

def ensure_directory(path: Path) -> Path:
    """
    Ensure directory exists, create if necessary

    Args:
        path: Directory path

    Returns:
        Path object
    """
    path.mkdir(parents=True, exist_ok=True)
    return path

def save_run_metadata(
    run_timestamp: str,
    metadata: Dict[str, Any],
    output_dir: Path
) -> Path:
    """
    Save run metadata to JSON file

    Args:
        run_timestamp: Timestamp for this run
        metadata: Metadata dictionary
        output_dir: Directory to save metadata

    Returns:
        Path to saved metadata file
    """
    ensure_directory(output_dir)

    metadata.update({
        "run_timestamp": run_timestamp,
        "python_version": sys.version,
        "created_at": datetime.now().isoformat()
    })

    metadata_path = output_dir / f"run_metadata_{run_timestamp}.json"

    with open(metadata_path, 'w') as f:
        json.dump(metadata, f, indent=2, default=str)

    return metadata_path
