"""Runtime settings: CLI option > TARMAKE_* environment variable > default."""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import WorkflowError
from .store import DEFAULT_STORE_DIR

ENV_PREFIX = "TARMAKE_"


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    store_dir: str = DEFAULT_STORE_DIR
    workflow: Optional[str] = None
    workers: int = Field(default=1, ge=1)
    fail_fast: bool = False
    log_level: int = Field(default=0, ge=0)   # 0 silent, 1 INFO, 2+ DEBUG
    log_file: Optional[str] = None

    @classmethod
    def load(
        cls,
        cli: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """
        Merge sources per field. CLI values of None mean "not given".
        """
        env = os.environ if environ is None else environ
        merged: Dict[str, Any] = {}
        for key in cls.model_fields:
            env_key = f"{ENV_PREFIX}{key.upper()}"
            if cli and cli.get(key) is not None:
                merged[key] = cli[key]
            elif env_key in env:
                merged[key] = env[env_key]
        try:
            return cls(**merged)
        except ValidationError as e:
            raise WorkflowError(f"Invalid settings: {e}") from e
