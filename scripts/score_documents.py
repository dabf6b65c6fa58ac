#!/usr/bin/env python3
"""
Compute a compliance score from a documents export.

Reads a CSV or Excel file with `category` and `expiration_date` columns
(one row per document) and prints the score as JSON.

Usage:
    python scripts/score_documents.py documents.csv [--as-of 2026-01-15]
"""

import sys
import json
import argparse
import logging
from pathlib import Path
from typing import List, Dict, Any

import pandas as pd

from complio.compliance_score_engine import compute_score, parse_expiration_date

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"category", "expiration_date"}


def load_documents(path: Path) -> List[Dict[str, Any]]:
    """Rows of the export as document dicts; blank cells become None."""
    if path.suffix.lower() in (".xlsx", ".xls"):
        df = pd.read_excel(path, engine="openpyxl" if path.suffix.lower() == ".xlsx" else "xlrd")
    else:
        df = pd.read_csv(path)

    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Missing column(s): {', '.join(sorted(missing))}")

    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def main():
    parser = argparse.ArgumentParser(description="Score a documents export")
    parser.add_argument("path", type=Path, help="CSV or Excel file")
    parser.add_argument("--as-of", help="Score as of this ISO date/time (default: now)")
    args = parser.parse_args()

    now = None
    if args.as_of:
        now = parse_expiration_date(args.as_of)
        if now is None:
            parser.error(f"Invalid --as-of value: {args.as_of}")

    try:
        documents = load_documents(args.path)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read {args.path}: {e}")
        sys.exit(1)

    logger.info(f"Scoring {len(documents)} document(s) from {args.path}")
    score = compute_score(documents, now=now)
    print(json.dumps(score.to_dict(), indent=2))


if __name__ == "__main__":
    main()
