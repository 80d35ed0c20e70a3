"""Runtime settings.

Defaults can be overridden from the environment:

- TRIPLINE_DB: path of the database file (default ~/.tripline)
- TRIPLINE_KDF_ITERATIONS: PBKDF2 iterations used when signing
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tripline._internal.crypto import DEFAULT_KDF_ITERATIONS, MAX_KDF_ITERATIONS
from tripline.kernel.check_registry import DEFAULT_DIR_CHECKS, DEFAULT_FILE_CHECKS

DB_FILENAME = ".tripline"
ENV_DB = "TRIPLINE_DB"
ENV_KDF_ITERATIONS = "TRIPLINE_KDF_ITERATIONS"


def default_db_path() -> Path:
    return Path.home() / DB_FILENAME


class Settings(BaseModel):
    """Resolved configuration for one invocation."""
    db_path: Path = Field(default_factory=default_db_path)
    default_fileset: str = "default"
    file_checks: str = DEFAULT_FILE_CHECKS
    dir_checks: str = DEFAULT_DIR_CHECKS
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS

    model_config = ConfigDict(extra="forbid")

    @field_validator("kdf_iterations")
    @classmethod
    def validate_kdf_iterations(cls, v: int) -> int:
        if v < 1 or v > MAX_KDF_ITERATIONS:
            raise ValueError(f"kdf_iterations must be between 1 and {MAX_KDF_ITERATIONS}, got {v}")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values = {}
        if env.get(ENV_DB):
            values["db_path"] = Path(env[ENV_DB]).expanduser()
        if env.get(ENV_KDF_ITERATIONS):
            values["kdf_iterations"] = env[ENV_KDF_ITERATIONS]
        return cls(**values)
