from auction_logs.chooseLogType import get_logger
from auction_logs.file import FileLogger
import os

env = os.getenv("ENV", "dev")
level = os.getenv("LOG_LEVEL", "DEBUG" if env == "dev" else "INFO")

server_logger = get_logger(mode=env, log_type="server", level=level)
auction_logger = get_logger(mode=env, log_type="auction", level=level)
realtime_logger = get_logger(mode=env, log_type="realtime", level=level)

# accepted bids always go to disk, whatever the mode or level
bid_logger = FileLogger(log_type="bids")
