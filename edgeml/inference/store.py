"""Directory-backed model bundle storage."""

from __future__ import annotations

import os
import shutil

from edgeml.core.config import get_settings
from edgeml.core.errors import ModelNotFound
from edgeml.core.logging import get_logger

logger = get_logger(__name__)


class ModelStore:
    """Resolve model names to bundle bytes under a single directory.

    Names are matched exactly against file names, extension included
    (``hrv_stress_analyzer_v3.pt``). Anything that would escape the
    directory is treated as not found.
    """

    def __init__(self, root: str | None = None) -> None:
        self.root = os.path.abspath(root or get_settings().model_store_dir)

    def path_for(self, name: str) -> str:
        if not name or name in (".", "..") or os.sep in name or "/" in name:
            raise ModelNotFound(f"Model file not found: {name!r}")
        return os.path.join(self.root, name)

    def resolve_bytes(self, name: str) -> bytes:
        """Return the raw bundle for *name*."""
        path = self.path_for(name)
        if not os.path.isfile(path):
            raise ModelNotFound(f"Model file not found: {name}")
        with open(path, "rb") as fh:
            return fh.read()

    def list_models(self) -> list[str]:
        if not os.path.isdir(self.root):
            return []
        return sorted(
            entry for entry in os.listdir(self.root)
            if os.path.isfile(os.path.join(self.root, entry))
        )

    def add(self, source_path: str, name: str | None = None) -> str:
        """Copy an existing bundle into the store and return its name."""
        name = name or os.path.basename(source_path)
        dest = self.path_for(name)
        os.makedirs(self.root, exist_ok=True)
        if os.path.abspath(source_path) != dest:
            shutil.copy2(source_path, dest)
        logger.info("model_bundle_added", model_name=name, path=dest)
        return name
