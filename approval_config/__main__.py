"""
Validate workflow definition files and print their fingerprints.

Usage:
    python -m approval_config approval_config/sets/example.yaml
    python -m approval_config --strict a.yaml b.yaml

Exit status is 1 if any file fails to load or validate (or, with
``--strict``, has warnings).
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import yaml

from approval_config.loader import compute_checksum, load_workflows
from approval_config.validator import validate_definitions
from approval_kernel.domain.codec import compute_definition_hash
from approval_kernel.exceptions import ConfigurationError


def check_file(path: Path, strict: bool = False) -> bool:
    """Load, validate and report one file. Returns True if it passed."""
    print(f"Checking: {path}")
    try:
        definitions = load_workflows(path)
    except (OSError, yaml.YAMLError, KeyError, ValueError, ConfigurationError) as exc:
        print(f"  LOAD FAILED: {exc}")
        return False

    for definition in definitions:
        flags = []
        if definition.is_default:
            flags.append("default")
        if not definition.is_active:
            flags.append("inactive")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(
            f"  {definition.name} v{definition.version}{suffix}: "
            f"{len(definition.steps)} step(s), "
            f"hash {compute_definition_hash(definition)[:16]}..."
        )

    result = validate_definitions(definitions)
    for err in result.errors:
        print(f"  ERROR: {err}")
    for w in result.warnings:
        print(f"  WARNING: {w}")
    print(f"  checksum: {compute_checksum(definitions)}")

    if not result.is_valid:
        return False
    return not (strict and result.warnings)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m approval_config",
        description="Validate approval workflow definition files.",
    )
    parser.add_argument("files", nargs="+", type=Path, help="YAML definition files")
    parser.add_argument(
        "--strict", action="store_true", help="treat warnings as errors",
    )
    args = parser.parse_args(argv)

    passed = [check_file(path, strict=args.strict) for path in args.files]
    if all(passed):
        print("OK")
        return 0
    print("VALIDATION FAILED", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
