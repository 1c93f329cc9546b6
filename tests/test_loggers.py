import io
import json

import pytest

from auction_logs.base import Logger
from auction_logs.chooseLogType import get_logger
from auction_logs.composite import CompositeLogger
from auction_logs.file import FileLogger
from auction_logs.json import JSONLogger
from auction_logs.stdout import StdoutLogger


class ListLogger(Logger):
    def __init__(self, level="DEBUG"):
        super().__init__(log_type="test", level=level)
        self.records = []

    def _emit(self, level, msg, data):
        self.records.append((level, msg, data))


def test_file_logger_writes_one_json_line_per_event(tmp_path):
    logger = FileLogger(log_type="bids", base_path=tmp_path)
    logger.info("bid_accepted", auction_id="a1", price=1500)
    logger.warning("bid_conflict", auction_id="a1")

    lines = (tmp_path / "bids.log").read_text().splitlines()
    assert len(lines) == 2

    first = json.loads(lines[0])
    assert first["event"] == "bid_accepted"
    assert first["level"] == "INFO"
    assert first["log_type"] == "bids"
    assert first["price"] == 1500
    assert json.loads(lines[1])["level"] == "WARN"


def test_json_logger_nests_fields():
    stream = io.StringIO()
    JSONLogger(log_type="auction", stream=stream).error("auction_sweep_failed", error="locked")

    record = json.loads(stream.getvalue())
    assert record["event"] == "auction_sweep_failed"
    assert record["data"] == {"error": "locked"}


def test_level_threshold_drops_quieter_events():
    logger = ListLogger(level="warning")
    logger.debug("chat_message", auction_id="a1")
    logger.info("bid_attempt", auction_id="a1")
    logger.warning("bid_conflict", auction_id="a1")
    logger.error("auction_sweep_failed")

    assert [r[0] for r in logger.records] == ["WARN", "ERROR"]


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError):
        ListLogger(level="LOUD")


def test_composite_logger_fans_out_and_children_filter():
    chatty, quiet = ListLogger(), ListLogger(level="ERROR")
    composite = CompositeLogger(chatty, quiet)

    composite.info("auction_created", auction_id="a1")
    composite.error("auction_sweep_failed", error="disk full")

    assert chatty.records == [
        ("INFO", "auction_created", {"auction_id": "a1"}),
        ("ERROR", "auction_sweep_failed", {"error": "disk full"}),
    ]
    assert quiet.records == [("ERROR", "auction_sweep_failed", {"error": "disk full"})]


def test_get_logger_modes(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))

    assert isinstance(get_logger("dev", "auction"), StdoutLogger)
    assert isinstance(get_logger("test", "auction"), FileLogger)

    prod = get_logger("prod", "auction", level="INFO")
    assert isinstance(prod, CompositeLogger)
    prod.debug("bid_attempt", auction_id="a1")
    prod.info("auction_created", auction_id="a1")

    text = (tmp_path / "auction.log").read_text()
    assert "auction_created" in text
    assert "bid_attempt" not in text

    with pytest.raises(ValueError):
        get_logger("staging", "auction")
