from auction_logs.base import Logger
from datetime import datetime, timezone
from pathlib import Path
import json
import os

class FileLogger(Logger):
    """Appends JSON lines to `<LOG_DIR>/<log_type>.log`, the files /admin/logs serves."""

    def __init__(self, log_type="server", base_path=None, level="DEBUG"):
        super().__init__(log_type=log_type, level=level)
        base_path = base_path or os.getenv("LOG_DIR", "logs")
        self.path = Path(base_path) / f"{log_type}.log"

        # Ensure directory exists
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _emit(self, level, msg, data):
        line = json.dumps({
            "ts": datetime.now(timezone.utc).isoformat(),
            "log_type": self.log_type,
            "level": level,
            "event": msg,
            **data
        }, default=str)
        with open(self.path, "a") as f:
            f.write(line + "\n")
