"""
User Storage - Persistent account records on top of StorageInterface.
"""

import json
import logging
from typing import Optional, Dict
from datetime import datetime, timezone
from .interface import StorageInterface
from ..core.errors import PersistenceError

logger = logging.getLogger(__name__)


class UserStorage:
    """
    Manages persistent storage of user accounts.
    One JSON file per user under users/, plus a username -> user_id index.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.users_dir = "users"
        self._username_index_path = f"{self.users_dir}/username_index.json"

    async def _load_username_index(self) -> Dict[str, str]:
        """Load username to user_id index mapping."""
        content = await self.storage.load(self._username_index_path)
        if content is None:
            return {}
        try:
            return json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Corrupt username index: {e}")
            return {}

    async def get_user(self, user_id: str) -> Optional[Dict]:
        """
        Get user by user_id.

        Returns:
            Optional[Dict]: User data or None if not found
        """
        content = await self.storage.load(f"{self.users_dir}/{user_id}.json")
        if content is None:
            return None

        try:
            user_data = json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Error loading user {user_id}: {e}")
            return None

        for key in ('created_at', 'updated_at'):
            if key in user_data:
                user_data[key] = datetime.fromisoformat(user_data[key])
        return user_data

    async def get_user_by_username(self, username: str) -> Optional[Dict]:
        """Get user by username, or None if the name is unknown."""
        index = await self._load_username_index()
        user_id = index.get(username)
        if user_id is None:
            return None
        return await self.get_user(user_id)

    async def create_user(
        self,
        user_id: str,
        username: str,
        hashed_password: str,
        email: Optional[str] = None
    ) -> Dict:
        """
        Create a new user.

        Args:
            user_id: User ID (UUID)
            username: Username
            hashed_password: Hashed password
            email: Optional email

        Returns:
            Dict: Created user data

        Raises:
            PersistenceError: If the user record or index could not be written
        """
        now = datetime.now(timezone.utc)
        user_data = {
            "user_id": user_id,
            "username": username,
            "email": email,
            "hashed_password": hashed_password,
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
            "is_active": True,
        }

        user_path = f"{self.users_dir}/{user_id}.json"
        if not await self.storage.save(user_path, json.dumps(user_data, indent=2, ensure_ascii=False)):
            raise PersistenceError(f"Failed to save user {username}")

        index = await self._load_username_index()
        index[username] = user_id
        if not await self.storage.save(self._username_index_path, json.dumps(index, indent=2)):
            raise PersistenceError(f"Failed to index user {username}")

        user_data['created_at'] = now
        user_data['updated_at'] = now
        return user_data


# Global user storage instance
_user_storage: Optional[UserStorage] = None


def init_user_storage(storage: StorageInterface) -> UserStorage:
    """Initialize the global user storage instance."""
    global _user_storage
    _user_storage = UserStorage(storage)
    return _user_storage


def get_user_storage() -> UserStorage:
    """
    Get the global user storage instance.

    Raises:
        RuntimeError: If user storage has not been initialized
    """
    if _user_storage is None:
        raise RuntimeError("User storage not initialized. Call init_user_storage() first.")
    return _user_storage
