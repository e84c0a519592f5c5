import json
import logging
import random
import string
import time
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import HistoryError

logger = logging.getLogger(__name__)

HistoryRecord = Dict[str, Any]

MAX_HISTORY_ITEMS = 100
DEFAULT_TITLE = "未命名图表"
LIST_FIELDS = ("id", "title", "description", "thumbnail", "chartType", "timestamp", "tags")
SEARCH_FIELDS = ("title", "description", "userInput")


class HistoryRepository:
    def __init__(self, base_dir: Path, max_items: int = MAX_HISTORY_ITEMS) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.max_items = max_items
        self._history_file = self.base_dir / "history.json"
        if not self._history_file.exists():
            self._write_records([])

    def save_diagram(
        self,
        code: str,
        elements: Sequence[Dict[str, Any]],
        title: str = "",
        description: str = "",
        thumbnail: Optional[str] = None,
        chart_type: str = "auto",
        user_input: str = "",
        tags: Optional[List[str]] = None,
        diagram_id: Optional[str] = None,
    ) -> str:
        record = {
            "id": diagram_id or _new_diagram_id(),
            "title": title or DEFAULT_TITLE,
            "description": description or "",
            "code": code,
            "elements": deepcopy(list(elements)),
            "thumbnail": thumbnail or None,
            "chartType": chart_type or "auto",
            "userInput": user_input or "",
            "timestamp": _now_ms(),
            "tags": list(tags or []),
        }
        self._put(record)
        logger.info("Saved diagram %s to history", record["id"])
        return record["id"]

    def list_history(
        self,
        limit: int = 50,
        offset: int = 0,
        search: str = "",
        sort_by: str = "timestamp",
        sort_order: str = "desc",
    ) -> List[HistoryRecord]:
        key_field = "timestamp" if sort_by == "timestamp" else "title"
        records = sorted(
            self._read_records(),
            key=lambda record: record.get(key_field) or (0 if key_field == "timestamp" else ""),
            reverse=sort_order == "desc",
        )

        needle = (search or "").lower()
        matches = [record for record in records if not needle or _matches(record, needle)]
        page = matches[max(offset, 0) : max(offset, 0) + max(limit, 0)]
        return [{field: deepcopy(record.get(field)) for field in LIST_FIELDS} for record in page]

    def get_diagram(self, diagram_id: str) -> Optional[HistoryRecord]:
        for record in self._read_records():
            if record.get("id") == diagram_id:
                return deepcopy(record)
        return None

    def update_diagram(self, diagram_id: str, updates: Dict[str, Any]) -> HistoryRecord:
        records = self._read_records()
        target = _find_record(records, diagram_id)
        target.update(deepcopy(updates))
        target["id"] = diagram_id
        self._write_records(records)
        return deepcopy(target)

    def delete_diagram(self, diagram_id: str) -> None:
        records = self._read_records()
        self._write_records([record for record in records if record.get("id") != diagram_id])

    def delete_diagrams(self, diagram_ids: Sequence[str]) -> None:
        targets = set(diagram_ids)
        if not targets:
            return
        records = self._read_records()
        self._write_records([record for record in records if record.get("id") not in targets])

    def clear_all(self) -> None:
        self._write_records([])
        logger.info("Cleared diagram history")

    def export_diagram_json(self, diagram_id: str) -> str:
        record = self.get_diagram(diagram_id)
        if record is None:
            raise HistoryError("Diagram not found")
        return json.dumps(record, ensure_ascii=False, indent=2)

    def import_diagram_json(self, json_string: str) -> str:
        try:
            diagram = json.loads(json_string)
        except ValueError as exc:
            raise HistoryError(f"Invalid JSON format: {exc}") from exc
        if not isinstance(diagram, dict):
            raise HistoryError("Invalid JSON format: expected an object")

        record = deepcopy(diagram)
        record["id"] = _new_diagram_id()
        record["timestamp"] = _now_ms()
        record.setdefault("title", DEFAULT_TITLE)
        record.setdefault("description", "")
        record.setdefault("userInput", "")
        record.setdefault("chartType", "auto")
        record.setdefault("tags", [])
        self._put(record)
        return record["id"]

    def stats(self) -> Dict[str, Any]:
        total = len(self._read_records())
        return {
            "total_diagrams": total,
            "max_capacity": self.max_items,
            "usage_percentage": (total / self.max_items) * 100 if self.max_items else 0.0,
        }

    def _put(self, record: HistoryRecord) -> None:
        records = self._read_records()
        for index, existing in enumerate(records):
            if existing.get("id") == record["id"]:
                records[index] = record
                break
        else:
            records.append(record)
        self._write_records(self._trim(records))

    def _trim(self, records: List[HistoryRecord]) -> List[HistoryRecord]:
        if len(records) <= self.max_items:
            return records
        oldest_first = sorted(records, key=lambda record: record.get("timestamp") or 0)
        dropped = {record.get("id") for record in oldest_first[: len(records) - self.max_items]}
        logger.info("Trimming %d old history item(s)", len(dropped))
        return [record for record in records if record.get("id") not in dropped]

    def _read_records(self) -> List[HistoryRecord]:
        if not self._history_file.exists():
            return []
        with self._history_file.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return data if isinstance(data, list) else []

    def _write_records(self, records: List[HistoryRecord]) -> None:
        with self._history_file.open("w", encoding="utf-8") as handle:
            json.dump(records, handle, ensure_ascii=False, indent=2)


def _matches(record: HistoryRecord, needle: str) -> bool:
    return any(needle in str(record.get(field) or "").lower() for field in SEARCH_FIELDS)


def _find_record(records: List[HistoryRecord], diagram_id: str) -> HistoryRecord:
    for record in records:
        if record.get("id") == diagram_id:
            return record
    raise HistoryError("Diagram not found")


def _new_diagram_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"diagram-{_now_ms()}-{suffix}"


def _now_ms() -> int:
    return int(time.time() * 1000)
