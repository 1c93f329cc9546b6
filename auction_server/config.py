import os
from dataclasses import dataclass
from pathlib import Path

# Everything here comes from the environment so several stateless instances
# can point at the same database files.

@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    auction_db_path: Path = Path("db/auctions.db")
    accounts_db_path: Path = Path("db/accounts.db")
    db_timeout_seconds: float = 5.0
    anti_snipe_seconds: int = 60
    bid_reward: int = 5
    listing_reward: int = 10
    max_bid_attempts: int = 3
    sweep_interval_seconds: float = 0.0
    log_dir: Path = Path("logs")
    log_level: str = "DEBUG"


def load_settings() -> Settings:
    return Settings(
        env=os.getenv("ENV", "dev"),
        auction_db_path=Path(os.getenv("AUCTION_DB_PATH", "db/auctions.db")),
        accounts_db_path=Path(os.getenv("ACCOUNTS_DB_PATH", "db/accounts.db")),
        db_timeout_seconds=float(os.getenv("DB_TIMEOUT_SECONDS", "5")),
        anti_snipe_seconds=int(os.getenv("ANTI_SNIPE_SECONDS", "60")),
        bid_reward=int(os.getenv("BID_REWARD", "5")),
        listing_reward=int(os.getenv("LISTING_REWARD", "10")),
        max_bid_attempts=max(1, int(os.getenv("MAX_BID_ATTEMPTS", "3"))),
        sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "0")),
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
        log_level=os.getenv("LOG_LEVEL", "DEBUG" if os.getenv("ENV", "dev") == "dev" else "INFO"),
    )
