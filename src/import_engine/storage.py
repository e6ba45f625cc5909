"""
Local file storage for uploads, canonical files, snapshots and diffs.

Layout under the storage root:
    imports/<version_id>/   original upload, canonical GeoJSON, validation.json
    snapshots/              one immutable RAS-<id>.geojson per snapshot
    import-diffs/           <version_id>.json saved at publish
"""

import json
import os
import shutil
from pathlib import Path
from typing import Any


class ImportFileStore:
    """Filesystem-backed blob store. Each version owns its directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.imports_dir = self.root / "imports"
        self.snapshots_dir = self.root / "snapshots"
        self.diffs_dir = self.root / "import-diffs"
        for directory in (self.imports_dir, self.snapshots_dir, self.diffs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def version_dir(self, version_id: str) -> Path:
        return self.imports_dir / version_id

    def save_upload(self, version_id: str, extension: str, data: bytes) -> Path:
        """Write the original upload as original<ext> in the version directory."""
        directory = self.version_dir(version_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"original{extension}"
        path.write_bytes(data)
        return path

    def validation_path(self, version_id: str) -> Path:
        return self.version_dir(version_id) / "validation.json"

    def diff_path(self, version_id: str) -> Path:
        return self.diffs_dir / f"{version_id}.json"

    def snapshot_path(self, snapshot_id: str) -> Path:
        return self.snapshots_dir / f"{snapshot_id}.geojson"

    def read_json(self, path: Path | str) -> Any:
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def write_json(self, path: Path | str, payload: Any) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, default=str)
        return path

    def write_once(self, path: Path | str, payload: Any) -> Path:
        """
        Create a new JSON file durably.

        The file is flushed and fsynced before returning.

        Raises:
            FileExistsError: If the path already exists
        """
        path = Path(path)
        with open(path, "x", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, default=str)
            f.flush()
            os.fsync(f.fileno())
        return path

    def exists(self, path: Path | str | None) -> bool:
        return bool(path) and Path(path).exists()

    def delete_version(self, version_id: str) -> None:
        shutil.rmtree(self.version_dir(version_id), ignore_errors=True)

    def is_writable(self) -> bool:
        return os.access(self.root, os.W_OK)
