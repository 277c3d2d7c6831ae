from enum import Enum
from typing import Any, Dict, Union
from pydantic import BaseModel, Field

from src.core.exceptions import InvalidArgumentError


# -----------------------
# Enums
# -----------------------

class ConflictBehavior(str, Enum):
    RENAME = "rename"
    FAIL = "fail"
    REPLACE = "replace"


class LinkType(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    EMBED = "embed"


def parse_conflict_behavior(value: Union[str, ConflictBehavior]) -> ConflictBehavior:
    """Validate a conflict behavior, raising InvalidArgumentError for unknown values."""
    try:
        return ConflictBehavior(value)
    except ValueError:
        allowed = ", ".join(b.value for b in ConflictBehavior)
        raise InvalidArgumentError(f"Invalid conflict behavior {value!r}, expected one of: {allowed}")


def parse_link_type(value: Union[str, LinkType]) -> LinkType:
    try:
        return LinkType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in LinkType)
        raise InvalidArgumentError(f"Invalid link type {value!r}, expected one of: {allowed}")


# -----------------------
# Models
# -----------------------

class ClientConfig(BaseModel):
    access_token: str
    content_type: str = "application/json"
    default_options: Dict[str, Any] = Field(default_factory=dict)
    selected_drive: str = "me"
    conflict_behavior: ConflictBehavior = ConflictBehavior.RENAME
    download_chunk_size: int = 8000
