#!/usr/bin/env python3
"""
CLI utility to run the stuck-asset scan once, outside Celery beat.

Usage:
    UV_CACHE_DIR=/tmp/uv uv run scripts/scan_stuck_assets.py --minutes 45
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.reliability.factory import get_reliability_engine
from assetflow_core.logging import setup_logging


def main():
    parser = argparse.ArgumentParser(description="Report and repair stuck assets")
    parser.add_argument(
        "--minutes",
        type=int,
        default=None,
        help="Override the stuck threshold (defaults to settings.STUCK_ASSET_MINUTES)",
    )
    args = parser.parse_args()

    setup_logging()

    incidents = get_reliability_engine().scan_stuck_assets(stuck_after_minutes=args.minutes)
    result = {
        "incidents": [
            {"id": incident.id, "asset_id": incident.source_id, "title": incident.title}
            for incident in incidents
        ],
        "count": len(incidents),
    }
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
