"""
In-memory flag snapshot store.

The store holds one immutable mapping of ``(tenant_id, key) -> FeatureFlag``.
Every change builds a new mapping and swaps the reference, so readers never
lock and never see a half-applied update: an evaluation that already holds a
flag keeps using it even if the file is reloaded underneath.
"""

import asyncio
import threading
import time
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import yaml

from shared.errors import FlagDefinitionError, ServiceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..engine.models import FeatureFlag
from .codec import decode_flags

FlagKey = Tuple[str, str]

DEFAULT_FLAGS_FILE = Path(__file__).resolve().parent.parent / "data" / "flags.yaml"

# ValueError covers UnicodeDecodeError from files that are not UTF-8.
LOAD_ERRORS = (OSError, ValueError, yaml.YAMLError, FlagDefinitionError)


class FlagSnapshotStore:
    """Flag provider backed by an atomically swapped in-memory snapshot."""

    source_name = "file"

    def __init__(
        self,
        flags_file: Optional[Union[str, Path]] = None,
        refresh_interval_seconds: float = 0,
        metrics: Optional[MetricsCollector] = None
    ):
        self.logger = get_logger("evaluation.store.snapshot")
        self.metrics = metrics
        self.refresh_interval_seconds = refresh_interval_seconds
        self._path = Path(flags_file) if flags_file else None
        self._write_lock = threading.Lock()
        self._snapshot: Mapping[FlagKey, FeatureFlag] = MappingProxyType({})
        self._loaded_at: Optional[float] = None
        self._loaded_mtime: Optional[float] = None
        self._last_error: Optional[str] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def path(self) -> Optional[Path]:
        return self._path

    async def start(self):
        """Load the flags file and start the background refresh."""
        if self._path is None:
            self.logger.warning("No flags file configured; starting with an empty snapshot")
            return

        try:
            self.load_file()
        except LOAD_ERRORS as e:
            self.logger.error("Failed to load flags file", path=str(self._path), error=str(e))
            raise ServiceError(f"Failed to load flags file {self._path}", {"error": str(e)}) from e

        if self.refresh_interval_seconds > 0:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

        self.logger.info("Flag snapshot store started", flags=len(self._snapshot), path=str(self._path))

    async def stop(self):
        """Stop the background refresh."""
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
            self.logger.info("Flag snapshot store stopped")

    async def _refresh_loop(self):
        while True:
            await asyncio.sleep(self.refresh_interval_seconds)
            try:
                await asyncio.to_thread(self.reload)
            except Exception as e:
                self._last_error = str(e)
                self.logger.error("Flag snapshot refresh failed", path=str(self._path), error=str(e))

    def load_file(self, path: Optional[Union[str, Path]] = None) -> int:
        """Parse a YAML or JSON flags file and swap it in. Raises on failure."""
        if path is not None:
            self._path = Path(path)
        if self._path is None:
            raise ServiceError("No flags file configured")

        mtime = self._path.stat().st_mtime
        with self._path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle) or []

        count = self.replace_all(decode_flags(document))
        self._loaded_mtime = mtime
        self._last_error = None
        self._record_load("ok")
        return count

    def reload(self) -> bool:
        """Reload the file if it changed. Keeps the old snapshot on failure."""
        if self._path is None:
            return False

        try:
            if self._loaded_mtime is not None and self._path.stat().st_mtime == self._loaded_mtime:
                return False
            count = self.load_file()
            self.logger.info("Flag snapshot reloaded", flags=count, path=str(self._path))
            return True
        except LOAD_ERRORS as e:
            self._last_error = str(e)
            self._record_load("error")
            self.logger.error(
                "Flag snapshot reload failed; keeping previous snapshot",
                path=str(self._path),
                error=str(e)
            )
            return False

    def replace_all(self, flags: Iterable[FeatureFlag]) -> int:
        """Swap in a complete new snapshot."""
        snapshot: Dict[FlagKey, FeatureFlag] = {}
        for flag in flags:
            key = (flag.tenant_id, flag.key)
            if key in snapshot:
                raise FlagDefinitionError(
                    "Duplicate flag key for tenant",
                    {"tenant_id": flag.tenant_id, "flag_key": flag.key}
                )
            snapshot[key] = flag

        with self._write_lock:
            self._snapshot = MappingProxyType(snapshot)
            self._loaded_at = time.time()
        return len(snapshot)

    def put_flag(self, flag: FeatureFlag):
        """Add or replace one flag (copy-on-write)."""
        with self._write_lock:
            snapshot = dict(self._snapshot)
            snapshot[(flag.tenant_id, flag.key)] = flag
            self._snapshot = MappingProxyType(snapshot)

    def remove_flag(self, tenant_id: str, key: str) -> bool:
        """Remove one flag (copy-on-write)."""
        with self._write_lock:
            if (tenant_id, key) not in self._snapshot:
                return False
            snapshot = dict(self._snapshot)
            del snapshot[(tenant_id, key)]
            self._snapshot = MappingProxyType(snapshot)
            return True

    async def get_flag(self, tenant_id: str, key: str) -> Optional[FeatureFlag]:
        """Get a flag by tenant and key."""
        return self._snapshot.get((tenant_id, key))

    async def invalidate(self, tenant_id: str, key: str) -> bool:
        """Snapshots are authoritative; invalidation forces a file re-read."""
        self._loaded_mtime = None
        return await asyncio.to_thread(self.reload)

    async def health_check(self) -> bool:
        return self._last_error is None

    async def get_stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        return {
            "source": self.source_name,
            "path": str(self._path) if self._path else None,
            "flags": len(snapshot),
            "tenants": len({tenant_id for tenant_id, _ in snapshot}),
            "loaded_at": self._loaded_at,
            "last_error": self._last_error,
        }

    def _record_load(self, status: str):
        if self.metrics:
            self.metrics.record_store_load(self.source_name, status, len(self._snapshot))
