from auction_logs.base import Logger
from datetime import datetime, timezone

class StdoutLogger(Logger):
    # human readable, one line per event

    def _emit(self, level, msg, data):
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        fields = " ".join(f"{k}={v}" for k, v in data.items())
        print(f"[{ts}] [{self.log_type}] {level:<5} {msg} {fields}".rstrip())
