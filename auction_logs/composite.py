from auction_logs.base import Logger

class CompositeLogger(Logger):
    """Sends each event to every child; children apply their own level."""

    def __init__(self, *loggers: Logger, level: str = "DEBUG"):
        log_type = loggers[0].log_type if loggers else "server"
        super().__init__(log_type=log_type, level=level)
        self.loggers = loggers

    def _emit(self, level, msg, data):
        for child in self.loggers:
            child.log(level, msg, data)
