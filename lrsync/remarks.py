"""
Remarks helpers.

Sales and purchases keep their remarks as a JSON-encoded list of
{remark, name, uuid, date}. A remark is identified by the (uuid, date, remark)
triple; there is no separate id.

Stored text that is not a JSON list (legacy free text, corrupt data) reads
as an empty list.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

Remark = Dict[str, Any]


def parse_remarks(raw: Optional[str]) -> List[Remark]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, list):
        return []
    return [r for r in parsed if isinstance(r, dict)]


REMARK_KEYS = ("remark", "name", "uuid", "date")


def validate_remarks(items: List[Any]) -> List[Remark]:
    """Full remark list from a client. Raises ValueError on any malformed entry."""
    cleaned = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"Remark {index + 1} must be an object.")
        missing = [k for k in REMARK_KEYS if not isinstance(item.get(k), str)]
        if missing:
            raise ValueError(f"Remark {index + 1} is missing {', '.join(missing)}.")
        if not item["remark"].strip():
            raise ValueError(f"Remark {index + 1} is empty.")
        cleaned.append({k: item[k] for k in REMARK_KEYS})
    return cleaned


def dump_remarks(remarks: List[Remark]) -> str:
    return json.dumps(remarks, ensure_ascii=False)


def _same_remark(a: Remark, b: Remark) -> bool:
    return (
        a.get("uuid") == b.get("uuid")
        and a.get("date") == b.get("date")
        and a.get("remark") == b.get("remark")
    )


def sorted_remarks(raw: Optional[str]) -> List[Remark]:
    """Newest first."""
    return sorted(parse_remarks(raw), key=lambda r: str(r.get("date") or ""), reverse=True)


def latest_remark(raw: Optional[str]) -> str:
    remarks = sorted_remarks(raw)
    return remarks[0].get("remark", "") if remarks else ""


def add_remark(raw: Optional[str], text: str, profile) -> str:
    """Append a remark authored by `profile` and return the new JSON text."""
    text = (text or "").strip()
    if not text:
        raise ValueError("Remark text is required.")
    remarks = parse_remarks(raw)
    remarks.append(
        {
            "remark": text,
            "name": getattr(profile, "full_name", None) or "",
            "uuid": getattr(profile, "uuid", None) or "",
            "date": datetime.utcnow().isoformat(),
        }
    )
    return dump_remarks(remarks)


def edit_remark(raw: Optional[str], target: Remark, new_text: str) -> str:
    """Replace the text of every remark matching `target`. Unmatched targets are a no-op."""
    new_text = (new_text or "").strip()
    if not new_text:
        raise ValueError("Remark text is required.")
    updated = []
    for remark in parse_remarks(raw):
        if _same_remark(remark, target):
            remark = {**remark, "remark": new_text}
        updated.append(remark)
    return dump_remarks(updated)


def delete_remark(raw: Optional[str], target: Remark) -> str:
    return dump_remarks([r for r in parse_remarks(raw) if not _same_remark(r, target)])
