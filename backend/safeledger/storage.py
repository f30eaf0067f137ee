# Overview: Backing object storage for closeout photos.

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class PhotoStorage(Protocol):
    def delete(self, path: str) -> None:
        """Remove the stored object at path. Missing objects are not an error."""


class LocalPhotoStorage:
    """Photos stored as files under a single root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Photo path escapes storage root: {path!r}")
        return target

    def delete(self, path: str) -> None:
        target = self.resolve(path)
        if target.is_file():
            target.unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"<LocalPhotoStorage root={str(self.root)!r}>"
