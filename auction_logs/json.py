from auction_logs.base import Logger
from datetime import datetime, timezone
import json
import sys

class JSONLogger(Logger):
    """One JSON object per line on stdout, for log shippers."""

    def __init__(self, log_type="server", level="DEBUG", stream=None):
        super().__init__(log_type=log_type, level=level)
        self.stream = stream

    def _emit(self, level, msg, data):
        (self.stream or sys.stdout).write(json.dumps({
            "ts": datetime.now(timezone.utc).isoformat(),
            "log_type": self.log_type,
            "level": level,
            "event": msg,
            "data": data
        }, default=str) + "\n")
