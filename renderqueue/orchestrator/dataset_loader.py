"""Utilities for loading uploaded datasets (one render per row)."""
from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Tuple


@dataclass
class DatasetSummary:
    """Shape of a parsed upload: its rows and column names."""

    rows: List[Dict[str, str]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _prepare_row(row: Dict[str, str]) -> Dict[str, str]:
    prepared: Dict[str, str] = {}
    for key, value in row.items():
        if key is None:
            continue
        prepared[key.strip()] = value.strip() if isinstance(value, str) else ""
    return prepared


def load_rows(csv_path: Path) -> DatasetSummary:
    """Read every non-blank row of the dataset CSV."""
    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise ValueError(f"Dataset has no header row: {csv_path}")
        columns = [name.strip() for name in reader.fieldnames]
        rows = []
        for raw in reader:
            prepared = _prepare_row(raw)
            if not any(prepared.values()):
                continue
            rows.append(prepared)
    return DatasetSummary(rows=rows, columns=columns)


def validate_rows(rows: Iterable[Dict[str, str]], data_fields: Iterable[str]) -> List[Tuple[int, bool, str]]:
    """Check each row supplies the template's data fields, without raising.

    Row numbers are 1-based, matching the row index stored on jobs.
    """
    required = list(data_fields)
    results: List[Tuple[int, bool, str]] = []
    for index, row in enumerate(rows, start=1):
        missing = [name for name in required if not row.get(name)]
        if missing:
            results.append((index, False, f"missing {', '.join(missing)}"))
        else:
            results.append((index, True, "ok"))
    return results
