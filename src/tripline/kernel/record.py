"""Baseline records: the unit stored per path in a fileset."""

import json
import os
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tripline._internal.canonical_json import canonical_bytes
from tripline.errors import CorruptRecordError


def display_path(path: str) -> str:
    """Printable form of a path; undecodable bytes are shown as \\xNN escapes."""
    return os.fsencode(path).decode("utf-8", "backslashreplace")


class Ownership(BaseModel):
    """Owner and group names of a path (baseline of the ownership check)."""
    user: str = Field(..., alias="User")
    group: str = Field(..., alias="Group")

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    def __str__(self) -> str:
        return f"{self.user}:{self.group}"


class BaselineRecord(BaseModel):
    """Recorded state of one path.

    `checks` fixes which checks run at verify time. It is stored with the
    record and never recomputed from the registry defaults, so changing the
    defaults does not silently change what an old baseline verifies.
    """
    is_dir: bool = Field(..., alias="isDir")
    checks: List[str]
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json_bytes(self) -> bytes:
        """Serialize to the stored wire form (canonical JSON)."""
        return canonical_bytes(self.model_dump(mode="json", by_alias=True))

    @classmethod
    def from_json_bytes(cls, path: str, data: bytes) -> "BaselineRecord":
        """Decode a stored value.

        Raises:
            CorruptRecordError: If the bytes are not a valid record.
        """
        try:
            payload = json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            raise CorruptRecordError(path, f"invalid json: {e}")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise CorruptRecordError(path, f"{e.error_count()} schema error(s)")


class Entry(BaseModel):
    """A stored record together with its key."""
    path: str
    record: BaselineRecord
