"""
Centralized configuration for the open data harvester.

All configurable settings are defined here and can be overridden via
environment variables (or a .env file in the working directory).
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# =============================================================================
# LOCATIONS
# =============================================================================

# Directory searched for dataset.json documents and resource files
DATA_DIR = Path(os.getenv("HARVESTER_DATA_DIR", "data"))

# Directory holding named alias configurations and per-dataset overrides
# (alias-mapping-<dataset id>.json)
MAPPING_DIR: Optional[Path] = (
    Path(os.environ["HARVESTER_MAPPING_DIR"]) if os.getenv("HARVESTER_MAPPING_DIR") else None
)

# Plain text file of dataset ids to skip, one per line
DENYLIST_FILE: Optional[Path] = (
    Path(os.environ["HARVESTER_DENYLIST_FILE"]) if os.getenv("HARVESTER_DENYLIST_FILE") else None
)

# =============================================================================
# HARVESTING
# =============================================================================

# Encoding assumed for resource files
DEFAULT_ENCODING = os.getenv("HARVESTER_DEFAULT_ENCODING", "utf-8")

# Datasets harvested in parallel
MAX_WORKERS = int(os.getenv("HARVESTER_MAX_WORKERS", "4"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("HARVESTER_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
