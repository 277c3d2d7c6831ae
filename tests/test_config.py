import pytest
from src.core.config import settings, _Config
from src.core.exceptions import ConfigurationError
from src.core.models import ConflictBehavior
from src.clients.onedrive_client import OneDriveClient

ENV_VARS = [
    "ONEDRIVE_ACCESS_TOKEN",
    "ONEDRIVE_DRIVE_ID",
    "ONEDRIVE_CONTENT_TYPE",
    "ONEDRIVE_CONFLICT_BEHAVIOR",
    "ONEDRIVE_TIMEOUT",
    "ONEDRIVE_DOWNLOAD_CHUNK_SIZE",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield monkeypatch
    monkeypatch.undo()
    settings.reload()


def test_settings_is_singleton():
    assert _Config() is settings


def test_defaults(clean_env):
    settings.reload()
    assert settings.ONEDRIVE_ACCESS_TOKEN is None
    assert settings.ONEDRIVE_DRIVE_ID == "me"
    assert settings.ONEDRIVE_CONTENT_TYPE == "application/json"
    assert settings.ONEDRIVE_CONFLICT_BEHAVIOR == "rename"
    assert settings.ONEDRIVE_TIMEOUT == 10.0
    assert settings.ONEDRIVE_DOWNLOAD_CHUNK_SIZE == 8000
    assert settings.DEFAULT_OPTIONS == {"timeout": 10.0}


def test_client_from_settings(clean_env):
    clean_env.setenv("ONEDRIVE_ACCESS_TOKEN", "env-token")
    clean_env.setenv("ONEDRIVE_DRIVE_ID", "b!drive")
    clean_env.setenv("ONEDRIVE_CONFLICT_BEHAVIOR", "fail")
    clean_env.setenv("ONEDRIVE_TIMEOUT", "2.5")
    clean_env.setenv("ONEDRIVE_DOWNLOAD_CHUNK_SIZE", "4096")
    clean_env.setenv("LOG_LEVEL", "debug")
    settings.reload()

    client = OneDriveClient.from_settings()

    assert settings.LOG_LEVEL == "DEBUG"
    assert client.access_token == "env-token"
    assert client.get_drive_path() == "/drives/b!drive"
    assert client.conflict_behavior is ConflictBehavior.FAIL
    assert client.default_options == {"timeout": 2.5}
    assert client.download_chunk_size == 4096


def test_client_from_settings_without_token(clean_env):
    settings.reload()
    with pytest.raises(ConfigurationError, match="ONEDRIVE_ACCESS_TOKEN"):
        OneDriveClient.from_settings()
