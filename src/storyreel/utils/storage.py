"""
Storage Utilities
=================

Helper functions for saving and loading run summaries.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Union

import yaml

logger = logging.getLogger(__name__)


def save_metadata(
    metadata: Dict[str, Any],
    output_path: Union[str, Path],
    format: str = "json",
) -> str:
    """
    Save metadata to a file.

    Args:
        metadata: Metadata dictionary
        output_path: Path to save the metadata
        format: Output format (json or yaml)

    Returns:
        Path to saved metadata
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    metadata = dict(metadata)
    metadata["saved_at"] = datetime.now().isoformat()

    if format == "yaml":
        with open(output_path, "w") as f:
            yaml.safe_dump(json.loads(json.dumps(metadata, default=str)), f, default_flow_style=False, sort_keys=False)
    else:
        with open(output_path, "w") as f:
            json.dump(metadata, f, indent=2, default=str)

    logger.debug(f"Metadata saved to {output_path}")
    return str(output_path)


def load_metadata(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """
    Load metadata from a JSON or YAML file.

    Returns:
        Metadata dictionary, or None if the file does not exist
    """
    path = Path(path)
    if not path.exists():
        return None

    with open(path, "r") as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(f)
        return json.load(f)
