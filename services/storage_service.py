"""
Storage service interface and implementations for job documents and artifacts.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional
import os
import json
import logging
import datetime

import aiofiles


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that understands dates and str enums."""

    def default(self, obj):
        if isinstance(obj, (datetime.date, datetime.datetime)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class StorageService(ABC):
    """
    Abstract base class defining the interface for storage services.
    """

    @abstractmethod
    async def save_json(self, data: Any, file_path: str) -> bool:
        """
        Save JSON data to a file.

        Returns:
            True if successful, False otherwise
        """
        pass

    @abstractmethod
    async def read_json(self, file_path: str) -> Optional[Any]:
        """
        Read JSON data from a file.

        Returns:
            Parsed JSON data if successful, None otherwise
        """
        pass

    @abstractmethod
    async def delete(self, file_path: str) -> bool:
        """Remove a stored file; missing files count as deleted."""
        pass

    @abstractmethod
    async def list_json(self, folder: str) -> List[str]:
        """Paths of the JSON documents directly inside a folder."""
        pass


class FileSystemStorage(StorageService):
    """
    Storage service implementation using the local file system.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    async def save_json(self, data: Any, file_path: str) -> bool:
        """
        Save JSON data to a file with support for date objects.

        The document is written to a temporary sibling first and then moved into
        place so readers never see a half-written file.
        """
        try:
            os.makedirs(os.path.dirname(file_path), exist_ok=True)
            json_str = json.dumps(data, indent=2, cls=DateTimeEncoder)
            tmp_path = f"{file_path}.tmp"
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(json_str)
            os.replace(tmp_path, file_path)
            self.logger.debug(f"Saved JSON to {file_path}")
            return True
        except TypeError as e:
            self.logger.error(f"JSON serialization error in {file_path}: {str(e)}")
            return False
        except OSError as e:
            self.logger.error(f"Error saving JSON to {file_path}: {str(e)}")
            return False

    async def read_json(self, file_path: str) -> Optional[Any]:
        try:
            if not os.path.exists(file_path):
                self.logger.debug(f"File not found: {file_path}")
                return None
            async with aiofiles.open(file_path, "r") as f:
                content = await f.read()
            return json.loads(content)
        except json.JSONDecodeError as e:
            self.logger.error(f"Error parsing JSON from {file_path}: {str(e)}")
            return None
        except OSError as e:
            self.logger.error(f"Error reading JSON from {file_path}: {str(e)}")
            return None

    async def delete(self, file_path: str) -> bool:
        try:
            os.remove(file_path)
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            self.logger.error(f"Error deleting {file_path}: {str(e)}")
            return False

    async def list_json(self, folder: str) -> List[str]:
        if not os.path.isdir(folder):
            return []
        return sorted(
            os.path.join(folder, name)
            for name in os.listdir(folder)
            if name.endswith(".json")
        )
