"""Local registration proxy helper process."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

from .errors import ConfigFault

logger = logging.getLogger(__name__)


def start_local_proxy(path: Optional[str]) -> subprocess.Popen:
    """Start the helper binary at ``path`` once; its lifecycle is the caller's."""
    if not path:
        raise ConfigFault("path_to_proxy is not configured")
    binary = Path(path).expanduser()
    if not binary.is_file():
        raise ConfigFault(f"Proxy helper not found: {binary}")
    logger.info(f"Starting local proxy helper {binary}")
    return subprocess.Popen([str(binary)], cwd=str(binary.parent))
