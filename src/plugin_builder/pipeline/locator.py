"""
plugin_builder.pipeline.locator - Plugin Root Discovery
=========================================================

Finds the directory holding ``manifest.json`` inside an extracted source
tree and loads the manifest.

Search order without a hint:
    1. <root>/manifest.json
    2. <root>/plugin/manifest.json
    3. <root>/src/manifest.json
    4. <root>/packages/plugin/manifest.json

With a monorepo sub-path hint, only ``<root>/<hint>/manifest.json`` is
accepted. There is no fallback: a monorepo caller named one plugin and
must get that plugin or an error.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from plugin_builder.core.exceptions import ManifestError, PluginNotFoundError
from plugin_builder.core.models import PluginManifest


MANIFEST_FILE_NAME = "manifest.json"

CONVENTIONAL_PLUGIN_DIRS: tuple[str, ...] = ("plugin", "src", "packages/plugin")


def locate_plugin_root(extracted_root: Path, sub_path: Optional[str] = None) -> Path:
    """Return the directory containing the plugin manifest.

    Args:
        extracted_root: The single top-level directory of the archive.
        sub_path: Optional monorepo path, relative to ``extracted_root``.

    Returns:
        The plugin root directory.

    Raises:
        PluginNotFoundError: If no manifest is found (or the hint does not
            point at one, or points outside the extracted tree).
    """
    extracted_root = Path(extracted_root)

    if sub_path:
        candidate = (extracted_root / sub_path.strip("/")).resolve()
        if not candidate.is_relative_to(extracted_root.resolve()):
            raise PluginNotFoundError(
                message=f"Plugin path escapes the repository root: {sub_path}",
                sub_path=sub_path,
            )
        if (candidate / MANIFEST_FILE_NAME).is_file():
            return candidate
        raise PluginNotFoundError(
            message=f"Could not find manifest.json at specified path: {sub_path}",
            sub_path=sub_path,
        )

    if (extracted_root / MANIFEST_FILE_NAME).is_file():
        return extracted_root

    for subdir in CONVENTIONAL_PLUGIN_DIRS:
        candidate = extracted_root / subdir
        if (candidate / MANIFEST_FILE_NAME).is_file():
            return candidate

    raise PluginNotFoundError(
        message="Could not find manifest.json in repository",
        details={"searched": [".", *CONVENTIONAL_PLUGIN_DIRS]},
    )


def load_manifest(plugin_dir: Path) -> PluginManifest:
    """Parse and validate ``plugin_dir/manifest.json``.

    Raises:
        ManifestError: If the file is unreadable, not JSON, not an object,
            or lacks the required name/version fields.
    """
    manifest_path = Path(plugin_dir) / MANIFEST_FILE_NAME

    try:
        raw = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(
            message=f"Could not read manifest.json: {e}",
            details={"path": str(manifest_path)},
        ) from e
    except json.JSONDecodeError as e:
        raise ManifestError(
            message=f"manifest.json is not valid JSON: {e}",
            details={"path": str(manifest_path)},
        ) from e

    if not isinstance(raw, dict):
        raise ManifestError(
            message="manifest.json must contain a JSON object",
            details={"path": str(manifest_path)},
        )

    try:
        return PluginManifest.model_validate(raw)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ManifestError(
            message=f"manifest.json is invalid: {', '.join(fields)}",
            details={"path": str(manifest_path), "fields": fields},
        ) from e
