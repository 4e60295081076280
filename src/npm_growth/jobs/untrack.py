from __future__ import annotations

import argparse

from npm_growth.jobs.common import build_store


def run(package_names: list[str]) -> dict[str, int]:
    """Soft-deactivate packages; their stored history is kept."""
    store = build_store()
    result = {"deactivated": 0, "unknown": 0}
    for package_name in package_names:
        if store.deactivate_package(package_name):
            result["deactivated"] += 1
            print(f"[untrack] {package_name} deactivated", flush=True)
        else:
            result["unknown"] += 1
            print(f"[untrack] {package_name} is not tracked", flush=True)
    return result


def main() -> None:
    parser = argparse.ArgumentParser(description="Stop tracking npm packages")
    parser.add_argument("packages", nargs="+", help="npm package names")
    args = parser.parse_args()

    result = run(args.packages)
    print(
        "untrack complete: "
        f"deactivated={result['deactivated']} unknown={result['unknown']}"
    )
    raise SystemExit(1 if result["deactivated"] == 0 else 0)


if __name__ == "__main__":
    main()
