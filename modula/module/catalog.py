"""
Manifest Catalog.

The static set of module manifests known to the kernel, plus loaders that
build a catalog from a JSON file or from a directory of module folders each
carrying a manifest.json.
"""

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from modula.module.errors import ConfigurationError
from modula.module.manifest import (
    ModuleManifest,
    parse_manifest,
    parse_manifest_data,
    validate_manifest,
)

logger = logging.getLogger(__name__)


class ManifestCatalog:
    """Collection of manifests keyed by unique id, in registration order."""

    def __init__(self, manifests: Iterable[ModuleManifest] = ()):
        self._manifests: dict[str, ModuleManifest] = {}
        self._lock = threading.Lock()
        self.revision = 0
        for manifest in manifests:
            self.add(manifest)

    def add(self, manifest: ModuleManifest) -> None:
        """
        Add a manifest.

        Raises:
            ConfigurationError: If the manifest is malformed or its id is taken
        """
        if not isinstance(manifest, ModuleManifest):
            raise ConfigurationError(
                f"Expected ModuleManifest, got {type(manifest).__name__}"
            )
        validate_manifest(manifest)
        with self._lock:
            if manifest.id in self._manifests:
                raise ConfigurationError(
                    f"Module '{manifest.id}' already registered", module_id=manifest.id
                )
            self._manifests[manifest.id] = manifest
            self.revision += 1

    def get(self, module_id: str) -> ModuleManifest | None:
        with self._lock:
            return self._manifests.get(module_id)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._manifests)

    def snapshot(self) -> dict[str, ModuleManifest]:
        """Copy of the id -> manifest map."""
        with self._lock:
            return dict(self._manifests)

    def __contains__(self, module_id: object) -> bool:
        with self._lock:
            return module_id in self._manifests

    def __iter__(self) -> Iterator[ModuleManifest]:
        return iter(self.snapshot().values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._manifests)


def _manifest_entries(data: Any, source: Path) -> list[Any]:
    if isinstance(data, dict) and "modules" in data:
        data = data["modules"]
    if not isinstance(data, list):
        raise ConfigurationError(
            f"{source}: expected a list of manifests or an object with 'modules'"
        )
    return data


def load_catalog(path: Path) -> tuple[ManifestCatalog, list[ConfigurationError]]:
    """
    Load manifests from a JSON file or a modules directory.

    A malformed or duplicate manifest is excluded and reported; the remaining
    manifests still load.

    Args:
        path: JSON file, or directory whose sub-directories hold manifest.json

    Returns:
        Tuple of (catalog, errors)

    Raises:
        ConfigurationError: If the source itself cannot be read
    """
    catalog = ManifestCatalog()
    errors: list[ConfigurationError] = []

    def _add(build) -> None:
        try:
            catalog.add(build())
        except ConfigurationError as e:
            logger.warning("Skipping manifest: %s", e)
            errors.append(e)

    if path.is_dir():
        for module_dir in sorted(path.iterdir()):
            if not module_dir.is_dir():
                continue
            manifest_path = module_dir / "manifest.json"
            if not manifest_path.exists():
                continue
            _add(lambda p=manifest_path: parse_manifest(p))
        return catalog, errors

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Catalog file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse catalog JSON: {e}") from e

    for entry in _manifest_entries(data, path):
        _add(lambda e=entry: parse_manifest_data(e))
    return catalog, errors


def read_manifest_data(path: Path) -> list[dict[str, Any]]:
    """Raw manifest dicts from a catalog JSON file (used by migration)."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Catalog file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse catalog JSON: {e}") from e
    return _manifest_entries(data, path)
