#!/usr/bin/env python3
"""
Convert a bond master Excel/CSV file to Parquet for faster loading.
The converted file is read back through the bond master adapter to validate it.
"""

import argparse
import os
import sys
import time

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fi_optimizer.data_handler import bond_master_from_frame, load_table  # noqa: E402


def convert_to_parquet(source: str, target: str) -> bool:
    """Convert ``source`` to Parquet at ``target``."""
    print("Converting bond master to Parquet...")
    print(f"Input:  {source}")
    print(f"Output: {target}")

    if not os.path.exists(source):
        print(f"Error: file not found: {source}")
        return False

    df = load_table(source)
    print(f"   Rows: {len(df):,}")
    print(f"   Columns: {len(df.columns)}")

    # Mixed object columns (text in numeric fields) must survive the round trip
    df = df.astype({c: str for c in df.columns if df[c].dtype == object})
    df.to_parquet(target, index=False, compression='snappy')

    start_time = time.time()
    master = bond_master_from_frame(load_table(target))
    print(f"Verified: {len(master):,} bonds readable in {time.time() - start_time:.3f}s")

    source_size = os.path.getsize(source) / 1024**2
    target_size = os.path.getsize(target) / 1024**2
    print(f"   Source:  {source_size:.2f} MB")
    print(f"   Parquet: {target_size:.2f} MB")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Convert a bond master file to Parquet")
    parser.add_argument("source")
    parser.add_argument("target", nargs="?")
    args = parser.parse_args()

    target = args.target or os.path.splitext(args.source)[0] + ".parquet"
    sys.exit(0 if convert_to_parquet(args.source, target) else 1)
