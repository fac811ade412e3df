#!/usr/bin/env python
"""Write a demo template pair and a matching sample dataset."""
from __future__ import annotations

import argparse
import csv
import json
from pathlib import Path

from dotenv import load_dotenv

DEMO_TEMPLATE_ID = "demo_lower_third"

DEMO_TEMPLATE = {
    "template": {
        "src": f"file:///templates/{DEMO_TEMPLATE_ID}.aep",
        "composition": "Main",
        "outputExt": "mp4",
    },
    "assets": [
        {"type": "data", "layerName": "Name", "property": "Source Text", "value": ""},
        {"type": "data", "layerName": "Title", "property": "Source Text", "value": ""},
    ],
    "actions": {},
}

DEMO_ROWS = [
    {"Name": "Ada Lovelace", "Title": "Analyst"},
    {"Name": "Grace Hopper", "Title": "Rear Admiral"},
    {"Name": "Alan Turing", "Title": "Mathematician"},
]


def seed_templates(templates_dir: Path, rows_path: Path) -> None:
    """Create the demo template pair and dataset when they are missing."""
    templates_dir.mkdir(parents=True, exist_ok=True)
    aep_path = templates_dir / f"{DEMO_TEMPLATE_ID}.aep"
    json_path = templates_dir / f"{DEMO_TEMPLATE_ID}.json"
    if not aep_path.exists():
        aep_path.write_bytes(b"")
    if not json_path.exists():
        json_path.write_text(json.dumps(DEMO_TEMPLATE, indent=2), encoding="utf-8")
    if rows_path.exists():
        return
    rows_path.parent.mkdir(parents=True, exist_ok=True)
    with rows_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=["Name", "Title"])
        writer.writeheader()
        for row in DEMO_ROWS:
            writer.writerow(row)


def main() -> None:
    """CLI entrypoint used by `python -m renderqueue.main seed-templates`."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Seed a demo template and dataset")
    parser.add_argument("--templates", type=Path, default=Path("templates"), help="Templates directory")
    parser.add_argument("--rows", type=Path, default=Path("data/sample_rows.csv"), help="Dataset CSV to write")
    args = parser.parse_args()
    seed_templates(args.templates, args.rows)


if __name__ == "__main__":
    main()
