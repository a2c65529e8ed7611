"""
Append-only trial record store with CSV export.

Records are kept as one JSON array under a single key of a key-value
backend.  save() is an upsert on (participant_id, trial_number), so a
resubmitted trial overwrites the earlier row instead of duplicating it.
"""

import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path

from .errors import PersistenceCorruptionError

logger = logging.getLogger(__name__)

STORAGE_KEY = "cm_experiment_records_v1"


# ══════════════════════════════════════════════════════════════════
#  Backends
# ══════════════════════════════════════════════════════════════════

class MemoryBackend:
    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileBackend:
    """One <key>.json file per key inside directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            raise PersistenceCorruptionError(f"{path} is not valid UTF-8") from e

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# ══════════════════════════════════════════════════════════════════
#  CSV helpers
# ══════════════════════════════════════════════════════════════════

def _format_value(val) -> str:
    if val is None:
        return ""
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    return str(val)


def escape_csv(val) -> str:
    s = _format_value(val)
    if any(ch in s for ch in ',"\n'):
        return '"' + s.replace('"', '""') + '"'
    return s


def records_to_csv(records: list[dict]) -> str:
    if not records:
        return ""
    headers = list(records[0].keys())
    lines = [",".join(headers)]
    for r in records:
        lines.append(",".join(escape_csv(r.get(h)) for h in headers))
    return "\n".join(lines)


def safe_filename_part(text: str) -> str:
    """Collapse anything but word characters, dots and dashes to "_"."""
    return re.sub(r"[^\w.-]", "_", text).strip(".") or "_"


def export_filename(participant_id: str | None = None) -> str:
    ts = datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")[:19]
    name = safe_filename_part(participant_id) if participant_id else "all"
    return f"experiment_{name}_{ts}.csv"


# ══════════════════════════════════════════════════════════════════
#  Store
# ══════════════════════════════════════════════════════════════════

class RecordStore:
    def __init__(self, backend=None, key: str = STORAGE_KEY):
        self.backend = backend if backend is not None else MemoryBackend()
        self.key = key
        self._lock = threading.RLock()

    # ── raw access ────────────────────────────────────────────────────────

    def _decode(self, raw: str) -> list[dict]:
        try:
            records = json.loads(raw)
        except ValueError as e:
            raise PersistenceCorruptionError(str(e)) from e
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise PersistenceCorruptionError(
                f"expected a JSON array of objects, got {type(records).__name__}"
            )
        return records

    def _read(self) -> list[dict]:
        try:
            raw = self.backend.get(self.key)
            if not raw:
                return []
            return self._decode(raw)
        except PersistenceCorruptionError as e:
            logger.warning("Failed to parse stored records under %r; resetting. (%s)", self.key, e)
            self.backend.remove(self.key)
            return []

    def _write(self, records: list[dict]) -> None:
        self.backend.set(self.key, json.dumps(records, ensure_ascii=False))

    # ── public API ────────────────────────────────────────────────────────

    def save(self, record) -> None:
        if hasattr(record, "to_dict"):
            record = record.to_dict()
        with self._lock:
            records = self._read()
            for i, r in enumerate(records):
                if (r.get("participant_id") == record.get("participant_id")
                        and r.get("trial_number") == record.get("trial_number")):
                    logger.warning("Duplicate detected; overwriting: %s", record)
                    records[i] = record
                    break
            else:
                records.append(record)
            self._write(records)

    def get_all(self) -> list[dict]:
        with self._lock:
            return self._read()

    def clear_all(self) -> None:
        with self._lock:
            self.backend.remove(self.key)

    def export_csv(self, participant_id: str | None = None) -> str:
        records = self.get_all()
        if participant_id:
            records = [r for r in records if r.get("participant_id") == participant_id]
        return records_to_csv(records)

    def write_csv(self, participant_id: str | None = None, filename: str | None = None,
                  directory: str | Path = ".") -> Path | None:
        """Write the export to a file; None when there is nothing to write."""
        csv_text = self.export_csv(participant_id)
        if not csv_text:
            logger.warning("No data to export. Complete at least one trial first.")
            return None

        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / (filename or export_filename(participant_id))
        path.write_text(csv_text, encoding="utf-8")
        logger.info("Exported %s", path)
        return path
