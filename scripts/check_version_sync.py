#!/usr/bin/env python3
"""
Fail when pyproject.toml and the package's __version__ disagree.

Usage: python scripts/check_version_sync.py [--root DIR] [--package mongo_retry]

The package is not imported; __version__ is read from src/<package>/__init__.py
so the check works before dependencies are installed.
"""
from __future__ import annotations
import argparse
import pathlib
import re

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # Python 3.9–3.10
    import tomli as tomllib  # type: ignore[no-redef]

_VERSION_RE = re.compile(r"""^__version__\s*=\s*["']([^"']+)["']""", re.MULTILINE)


def read_versions(root: pathlib.Path, package: str) -> tuple[str, str | None]:
    with open(root / "pyproject.toml", "rb") as f:
        ver_toml = tomllib.load(f)["project"]["version"]
    init_py = (root / "src" / package / "__init__.py").read_text(encoding="utf-8")
    m = _VERSION_RE.search(init_py)
    return ver_toml, m.group(1) if m else None


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--root", default=".", type=pathlib.Path)
    parser.add_argument("--package", default="mongo_retry")
    args = parser.parse_args()

    ver_toml, ver_pkg = read_versions(args.root.resolve(), args.package)
    if ver_toml != ver_pkg:
        raise SystemExit(f"Version mismatch: pyproject={ver_toml} != {args.package}={ver_pkg}")
    print(f"Version OK: {ver_toml}")


if __name__ == "__main__":
    main()
