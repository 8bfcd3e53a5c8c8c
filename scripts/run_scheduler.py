import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from insider_signals.config import load_config
from insider_signals.db import init_db
from insider_signals.jobs.scheduler import run_scheduler_forever


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    run_scheduler_forever(cfg)


if __name__ == "__main__":
    main()
