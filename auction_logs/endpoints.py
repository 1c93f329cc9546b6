from fastapi import APIRouter, Query, HTTPException
from fastapi.responses import PlainTextResponse
from pathlib import Path
from datetime import datetime
from typing import Iterator, Optional
import json
import os

router = APIRouter(prefix="/admin/logs", tags=["logs"])

LOG_TYPES = ("server", "auction", "realtime", "bids")
LOG_TYPE_PATTERN = f"^({'|'.join(LOG_TYPES)})$"

def get_log_dir() -> Path:
    # read per call so LOG_DIR changes (tests, reloads) are picked up
    return Path(os.getenv("LOG_DIR", "logs"))

def get_log_path(log_type: str) -> Path:
    if log_type not in LOG_TYPES:
        raise HTTPException(400, f"Invalid log type. Allowed: {', '.join(LOG_TYPES)}")
    return get_log_dir() / f"{log_type}.log"

def read_records(log_path: Path) -> Iterator[dict]:
    """Yield parsed records from a JSON-lines log, oldest first. Lines that
    are not JSON (hand edits, partial writes) come back as {"raw": line}."""
    with open(log_path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                yield {"raw": line}

def matches(record: dict, level: Optional[str], event: Optional[str],
            auction_id: Optional[str], contains: Optional[str]) -> bool:
    if level and record.get("level") != level.upper():
        return False
    if event and record.get("event") != event:
        return False
    if auction_id and str(record.get("auction_id")) != auction_id:
        return False
    if contains and contains.lower() not in json.dumps(record, default=str).lower():
        return False
    return True

@router.get("/tail")
async def tail_logs(
    log_type: str = Query("server", pattern=LOG_TYPE_PATTERN),
    lines: int = Query(50, ge=1, le=500)
):
    """Newest N records"""
    log_path = get_log_path(log_type)
    if not log_path.exists():
        return {"records": [], "error": f"No {log_type} log file"}

    records = list(read_records(log_path))
    return {"records": records[-lines:], "count": len(records), "log_type": log_type}

@router.get("/head")
async def head_logs(
    log_type: str = Query("server", pattern=LOG_TYPE_PATTERN),
    lines: int = Query(50, ge=1, le=500)
):
    """Oldest N records"""
    log_path = get_log_path(log_type)
    if not log_path.exists():
        return {"records": [], "error": f"No {log_type} log file"}

    records = []
    for record in read_records(log_path):
        records.append(record)
        if len(records) >= lines:
            break
    return {"records": records, "log_type": log_type}

@router.get("/search")
async def search_logs(
    log_type: str = Query("auction", pattern=LOG_TYPE_PATTERN),
    level: Optional[str] = None,
    event: Optional[str] = None,
    auction_id: Optional[str] = None,
    contains: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000)
):
    """Filter records by level, event name, auction id or free text"""
    log_path = get_log_path(log_type)
    if not log_path.exists():
        return {"records": [], "error": f"No {log_type} log file"}

    results = []
    for record in read_records(log_path):
        if not matches(record, level, event, auction_id, contains):
            continue
        results.append(record)
        if len(results) >= limit:
            break

    return {"records": results, "count": len(results), "log_type": log_type}

@router.get("/bids/{auction_id}")
async def bid_trail(auction_id: str):
    """Every accepted bid for one auction as written to bids.log, oldest first.
    Kept apart from the audit table so the two can be checked against each other."""
    log_path = get_log_path("bids")
    if not log_path.exists():
        return {"auction_id": auction_id, "bids": [], "count": 0}

    bids = [
        r for r in read_records(log_path)
        if r.get("event") == "bid_accepted" and r.get("auction_id") == auction_id
    ]
    return {"auction_id": auction_id, "bids": bids, "count": len(bids)}

@router.get("/available")
async def list_available_logs():
    """Log files on disk with size and last write time"""
    log_dir = get_log_dir()
    if not log_dir.exists():
        return {"logs": []}

    logs = []
    for f in sorted(log_dir.glob("*.log")):
        if f.stem not in LOG_TYPES:
            continue
        stat = f.stat()
        logs.append({
            "name": f.stem,
            "size_bytes": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime).isoformat()
        })
    return {"logs": logs}

@router.get("/raw/{log_type}")
async def get_raw_log(log_type: str):
    """Get raw log file content (for piping/downloading)"""
    log_path = get_log_path(log_type)
    if not log_path.exists():
        raise HTTPException(404, f"No {log_type} log file")

    return PlainTextResponse(log_path.read_text())
