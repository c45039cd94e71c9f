#!/usr/bin/env python3
"""
Register settings strings and pre-render their derivatives.

Useful after a deploy (cold derivative directory) or to seed the validity
cache for URLs that are published outside the templates (feeds, e-mails).

Examples:
  python scripts/pregenerate_derivatives.py --settings w320 w640_r16x9 --files 2024/hero.jpg 2024/team.png
  python scripts/pregenerate_derivatives.py --settings w200_h200 --all --register-only
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List

from common.logging_setup import setup_logging
from dynamic_image_style.config import load_config
from dynamic_image_style.delivery import gate_from_config
from dynamic_image_style.errors import DynamicImageStyleError
from dynamic_image_style.plan import build_plan

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}


def list_sources(files_root: Path) -> List[str]:
    if not files_root.exists():
        return []
    return sorted(
        str(p.relative_to(files_root).as_posix())
        for p in files_root.rglob("*")
        if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
    )


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None, help="YAML params (default: $DIS_CONFIG or config/params.yaml)")
    ap.add_argument("--settings", nargs="+", required=True, help="Settings strings, e.g. w320 w640_r16x9")
    ap.add_argument("--files", nargs="*", default=[], help="Source identities relative to files_root")
    ap.add_argument("--all", action="store_true", help="Use every image below files_root")
    ap.add_argument("--register-only", action="store_true", help="Only seed the validity cache")
    args = ap.parse_args()

    setup_logging()
    cfg = load_config(args.config)
    gate = gate_from_config(cfg)

    # Reject malformed settings before touching the cache
    for s in args.settings:
        try:
            build_plan(s)
        except DynamicImageStyleError as e:
            print(f"[err] {s}: {e.message}", file=sys.stderr)
            return 2

    gate.validity.register_many(args.settings)
    print(f"[ok] registered {len(args.settings)} settings ({gate.validity.count()} total)")
    if args.register_only:
        return 0

    files = list(args.files)
    if args.all:
        files.extend(list_sources(gate.store.files_root))

    failures = 0
    for file_id in files:
        for s in args.settings:
            try:
                d = gate.deliver(file_id, s)
                state = "new" if d.created else "cached"
                print(f"[ok] {d.path} ({d.content_length} bytes, {state})")
            except DynamicImageStyleError as e:
                failures += 1
                print(f"[err] {file_id} {s}: {e.message}", file=sys.stderr)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
