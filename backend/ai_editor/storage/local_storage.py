"""
Local Filesystem Storage Implementation.
This implementation stores all data on the server's local filesystem.
"""

import json
import logging
import os
import aiofiles
from pathlib import Path
from typing import Optional, List, Dict, Any
import glob as glob_module
from .interface import StorageInterface

logger = logging.getLogger(__name__)


class LocalStorage(StorageInterface):
    """
    Local filesystem storage implementation.
    Stores all data in a base directory on the server.
    """

    def __init__(self, base_dir: str = "./data"):
        """
        Initialize local storage with a base directory.

        Args:
            base_dir: Base directory for all stored files
        """
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, path: str) -> Path:
        """Convert relative path to full absolute path within base directory."""
        full_path = (self.base_dir / path).resolve()

        # Security check: ensure path is within base_dir
        if not full_path.is_relative_to(self.base_dir):
            raise ValueError(f"Invalid path: {path} - path traversal detected")

        return full_path

    async def save(
        self,
        path: str,
        content: bytes | str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Save content to local filesystem.

        Content is written to a sibling temp file and renamed into place so a
        reader never observes a half-written file.
        """
        try:
            full_path = self._get_full_path(path)
            full_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = full_path.with_suffix(full_path.suffix + '.tmp')

            if isinstance(content, str):
                async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                    await f.write(content)
            else:
                async with aiofiles.open(tmp_path, 'wb') as f:
                    await f.write(content)
            os.replace(tmp_path, full_path)

            if metadata:
                metadata_path = full_path.with_suffix(full_path.suffix + '.meta')
                async with aiofiles.open(metadata_path, 'w', encoding='utf-8') as f:
                    await f.write(json.dumps(metadata, indent=2))

            return True
        except (OSError, ValueError) as e:
            logger.error(f"Error saving file {path}: {e}")
            return False

    async def load(self, path: str) -> Optional[bytes]:
        """Load content from local filesystem."""
        try:
            full_path = self._get_full_path(path)
            if not full_path.exists():
                return None

            async with aiofiles.open(full_path, 'rb') as f:
                return await f.read()
        except (OSError, ValueError) as e:
            logger.error(f"Error loading file {path}: {e}")
            return None

    async def exists(self, path: str) -> bool:
        """Check if file exists."""
        try:
            return self._get_full_path(path).exists()
        except ValueError:
            return False

    async def delete(self, path: str) -> bool:
        """Delete file from local filesystem."""
        try:
            full_path = self._get_full_path(path)
            if not full_path.exists():
                return False

            full_path.unlink()
            metadata_path = full_path.with_suffix(full_path.suffix + '.meta')
            if metadata_path.exists():
                metadata_path.unlink()
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Error deleting file {path}: {e}")
            return False

    async def list(
        self,
        path: str,
        pattern: Optional[str] = None,
        recursive: bool = False
    ) -> List[str]:
        """List files in directory."""
        try:
            full_path = self._get_full_path(path)
            if not full_path.exists():
                return []

            if pattern:
                if recursive:
                    files = glob_module.glob(str(full_path / "**" / pattern), recursive=True)
                else:
                    files = glob_module.glob(str(full_path / pattern))
            else:
                if recursive:
                    files = [str(p) for p in full_path.rglob("*") if p.is_file()]
                else:
                    files = [str(p) for p in full_path.glob("*") if p.is_file()]

            relative_paths = []
            for file_path in files:
                # Skip metadata and in-flight temp files
                if file_path.endswith(('.meta', '.tmp')):
                    continue
                relative_paths.append(str(Path(file_path).relative_to(self.base_dir)))

            return sorted(relative_paths)
        except (OSError, ValueError) as e:
            logger.error(f"Error listing files in {path}: {e}")
            return []
