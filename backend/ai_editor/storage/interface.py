"""
Storage Interface - Abstract base class for all storage implementations.
This interface enables switching between the local filesystem and object stores.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any


class StorageInterface(ABC):
    """
    Abstract storage interface that defines the contract for all storage implementations.
    Implementations report failures through their return values and never raise
    for I/O errors; callers decide whether a failure is fatal.
    """

    @abstractmethod
    async def save(
        self,
        path: str,
        content: bytes | str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Save content to the specified path.

        Args:
            path: Relative path where content should be saved (e.g., "topics/<id>/messages.json")
            content: Content to save (bytes for binary files, str for text)
            metadata: Optional metadata to associate with the file

        Returns:
            bool: True if save was successful, False otherwise
        """
        pass

    @abstractmethod
    async def load(self, path: str) -> Optional[bytes]:
        """
        Load content from the specified path.

        Returns:
            Optional[bytes]: File content as bytes, or None if file doesn't exist
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if a file exists at the specified path."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """
        Delete file at the specified path.

        Returns:
            bool: True if a file was deleted, False otherwise
        """
        pass

    @abstractmethod
    async def list(
        self,
        path: str,
        pattern: Optional[str] = None,
        recursive: bool = False
    ) -> List[str]:
        """
        List files in the specified directory.

        Args:
            path: Directory path to list
            pattern: Optional glob pattern to filter files (e.g., "*.json")
            recursive: Whether to list files recursively

        Returns:
            List[str]: Sorted relative file paths
        """
        pass
