from __future__ import annotations

import argparse

from npm_growth.storage.lancedb_store import EXPECTED_TABLES, LanceDBStore


def run(*, reset: bool = False) -> dict[str, int]:
    store = LanceDBStore()

    if reset:
        print(f"[bootstrap] resetting tables: {', '.join(EXPECTED_TABLES)}", flush=True)
        store.reset_tables()

    print("[bootstrap] creating required tables", flush=True)
    store.create_required_tables(
        on_table=lambda table_name: print(
            f"[bootstrap] ensuring table: {table_name}", flush=True
        )
    )
    counts = {name: store.count_rows(name) for name in EXPECTED_TABLES}
    for name, count in counts.items():
        print(f"[bootstrap] {name} rows={count}", flush=True)
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Create the LanceDB tables used by npm-growth"
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop existing tables first (deletes all stored data)",
    )
    args = parser.parse_args()

    counts = run(reset=args.reset)
    print(
        "bootstrap_tables complete: "
        + " ".join(f"{name}={count}" for name, count in counts.items())
    )


if __name__ == "__main__":
    main()
