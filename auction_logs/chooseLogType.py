from auction_logs.stdout import StdoutLogger
from auction_logs.file import FileLogger
from auction_logs.json import JSONLogger
from auction_logs.composite import CompositeLogger

LOG_MODES = ("dev", "prod", "test")

def get_logger(mode="dev", log_type="server", level="DEBUG"):
    """
    dev  -> readable stdout lines
    prod -> <log_type>.log file plus JSON on stdout
    test -> file only, so test output stays quiet
    """
    if mode not in LOG_MODES:
        raise ValueError(f"Unknown ENV '{mode}'. Allowed: {', '.join(LOG_MODES)}")

    if mode == "prod":
        return CompositeLogger(
            FileLogger(log_type=log_type, level=level),
            JSONLogger(log_type=log_type, level=level)
        )
    if mode == "test":
        return FileLogger(log_type=log_type, level=level)
    return StdoutLogger(log_type=log_type, level=level)
