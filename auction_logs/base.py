from abc import ABC, abstractmethod

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


def normalize_level(level: str) -> str:
    level = (level or "DEBUG").upper()
    if level == "WARNING":
        return "WARN"
    if level not in LEVELS:
        raise ValueError(f"Unknown log level '{level}'. Allowed: {', '.join(LEVELS)}")
    return level


class Logger(ABC):
    """
    Event logger. `msg` is a snake_case event name, `data` its fields.
    Events below `level` are dropped before they reach `_emit`.
    """

    def __init__(self, log_type: str = "server", level: str = "DEBUG"):
        self.log_type = log_type
        self.level = normalize_level(level)

    def enabled(self, level: str) -> bool:
        return LEVELS[level] >= LEVELS[self.level]

    def log(self, level: str, msg: str, data: dict):
        if self.enabled(level):
            self._emit(level, msg, data)

    @abstractmethod
    def _emit(self, level: str, msg: str, data: dict): ...

    def info(self, msg: str, **data):
        self.log("INFO", msg, data)

    def debug(self, msg: str, **data):
        self.log("DEBUG", msg, data)

    def warning(self, msg: str, **data):
        self.log("WARN", msg, data)

    def error(self, msg: str, **data):
        self.log("ERROR", msg, data)
