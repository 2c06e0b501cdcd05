# store.py
from __future__ import annotations

import logging
import os
import pickle
import shutil
import time
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from .errors import NotFoundError, StoreIOError
from .hashing import sha256_bytes
from .model import RunRecord

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = ".tarmake"


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write to a sibling temp file, fsync, then rename over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp-{os.getpid()}-{time.time_ns()}")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink(missing_ok=True)


class ResultStore:
    """
    File-based durable store:
      root/
        objects/<name>        pickled result
        meta/<name>.json      RunRecord

    Writes are per target name. The object is written before its record,
    so a record never points at a result that was not fully written.
    """

    def __init__(self, root: str | Path = DEFAULT_STORE_DIR):
        self.root = Path(root).resolve()

    @property
    def objects_dir(self) -> Path:
        return self.root / "objects"

    @property
    def meta_dir(self) -> Path:
        return self.root / "meta"

    def object_path(self, name: str) -> Path:
        return self.objects_dir / name

    def record_path(self, name: str) -> Path:
        return self.meta_dir / f"{name}.json"

    # ---- records ----

    def load_record(self, name: str) -> Optional[RunRecord]:
        """Return the Run Record for `name`, None if it was never run."""
        path = self.record_path(name)
        if not path.exists():
            return None
        try:
            return RunRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StoreIOError(name, f"cannot read {path}: {e}") from e
        except ValidationError as e:
            raise StoreIOError(name, f"corrupt run record {path}: {e.error_count()} error(s)") from e

    def save_record(self, record: RunRecord) -> None:
        try:
            _atomic_write_bytes(
                self.record_path(record.name),
                record.model_dump_json(indent=2).encode("utf-8"),
            )
        except OSError as e:
            raise StoreIOError(record.name, f"cannot write run record: {e}") from e

    def delete_record(self, name: str) -> bool:
        path = self.record_path(name)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise StoreIOError(name, f"cannot delete run record: {e}") from e
        return True

    def names(self) -> List[str]:
        if not self.meta_dir.exists():
            return []
        return sorted(p.stem for p in self.meta_dir.glob("*.json"))

    # ---- results ----

    def save_value(self, name: str, value: Any) -> str:
        """Persist a result; returns its content hash."""
        try:
            data = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise StoreIOError(name, f"result is not serializable: {e}") from e
        try:
            _atomic_write_bytes(self.object_path(name), data)
        except OSError as e:
            raise StoreIOError(name, f"cannot write result: {e}") from e
        return sha256_bytes(data)

    def has_value(self, name: str) -> bool:
        return self.object_path(name).exists()

    def load_value(self, name: str) -> Any:
        path = self.object_path(name)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(name, "result object missing from store") from e
        except OSError as e:
            raise StoreIOError(name, f"cannot read result: {e}") from e
        try:
            return pickle.loads(data)
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError) as e:
            raise StoreIOError(name, f"corrupt result object: {e}") from e

    def read(self, name: str) -> Any:
        """
        Return the last successful result of `name`.

        Raises NotFoundError when the target has never run successfully.
        """
        record = self.load_record(name)
        if record is None:
            raise NotFoundError(name)
        if record.result_hash is None:
            raise NotFoundError(name, f"last run status is '{record.status}' and it never succeeded")
        return self.load_value(name)

    # ---- maintenance ----

    def destroy(self) -> None:
        """Remove the whole store directory."""
        if self.root.exists():
            logger.info("removing store %s", self.root)
            shutil.rmtree(self.root)
