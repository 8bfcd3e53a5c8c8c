import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from insider_signals.config import load_config
from insider_signals.jobs.cycles import PROCESSORS, run_signal_cycle


def main() -> None:
    ap = argparse.ArgumentParser(description="Run one detection cycle")
    ap.add_argument("--processor", default="all", choices=["all", *PROCESSORS])
    args = ap.parse_args()

    cfg = load_config()
    res = run_signal_cycle(cfg.DB_DSN, cfg, processor=args.processor)
    print(json.dumps(res, indent=2))
    if res.get("error"):
        sys.exit(1)


if __name__ == "__main__":
    main()
