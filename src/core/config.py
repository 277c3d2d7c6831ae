import os
from dotenv import load_dotenv, find_dotenv
from threading import Lock

class _Config:
    """
    Singleton class for configuration loaded from environment variables.
    """
    _instance = None
    _lock = Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._load()
        return cls._instance

    def _load(self):
        # Load environment variables from .env if exists
        load_dotenv(find_dotenv(usecwd=True))

        # OneDrive client
        self.ONEDRIVE_ACCESS_TOKEN = os.getenv("ONEDRIVE_ACCESS_TOKEN")
        self.ONEDRIVE_DRIVE_ID = os.getenv("ONEDRIVE_DRIVE_ID", "me")
        self.ONEDRIVE_CONTENT_TYPE = os.getenv("ONEDRIVE_CONTENT_TYPE", "application/json")
        self.ONEDRIVE_CONFLICT_BEHAVIOR = os.getenv("ONEDRIVE_CONFLICT_BEHAVIOR", "rename")
        self.ONEDRIVE_TIMEOUT = float(os.getenv("ONEDRIVE_TIMEOUT", "10"))
        self.ONEDRIVE_DOWNLOAD_CHUNK_SIZE = int(os.getenv("ONEDRIVE_DOWNLOAD_CHUNK_SIZE", "8000"))

        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    def reload(self):
        """Re-read the environment, e.g. after the process env changed."""
        with self._lock:
            self._load()
        return self

    # Derived request options
    @property
    def DEFAULT_OPTIONS(self) -> dict:
        return {"timeout": self.ONEDRIVE_TIMEOUT}

# Singleton instance
settings = _Config()
