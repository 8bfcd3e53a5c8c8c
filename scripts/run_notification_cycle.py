import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from insider_signals.config import load_config
from insider_signals.jobs.cycles import run_notification_cycle


def main() -> None:
    cfg = load_config()
    res = run_notification_cycle(cfg.DB_DSN, cfg)
    print(json.dumps(res, indent=2))
    if res.get("error"):
        sys.exit(1)


if __name__ == "__main__":
    main()
