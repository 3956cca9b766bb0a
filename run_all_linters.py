#!/usr/bin/env python3
"""Run every formatter check, linter and the test suite in one pass.

Steps, in order:
1. Black formatting check
2. isort import order check
3. Ruff static checks
4. Pylint static analysis
5. pytest

Output is collected and failures are repeated at the end.
"""

from pathlib import Path
import subprocess
import sys

SOURCES = ["app", "core", "infrastructure", "main.py"]


def run_command(cmd: list[str], description: str) -> tuple[bool, str]:
    """Run `cmd` and return (success, combined output)."""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"Command: {' '.join(cmd)}")
    print("=" * 60)

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=False, cwd=Path(__file__).parent
        )
    except OSError as e:
        print(f"FAILED to start: {e}")
        return False, str(e)

    success = result.returncode == 0
    output = result.stdout + result.stderr
    print("OK" if success else "FAILED")
    if output.strip():
        print("\nOutput:")
        print(output)
    return success, output


def main() -> None:
    """Run all checks and exit non-zero if any failed."""
    commands = [
        ([sys.executable, "-m", "black", ".", "--check"], "Black check"),
        ([sys.executable, "-m", "isort", ".", "--check-only"], "isort check"),
        ([sys.executable, "-m", "ruff", "check", "."], "Ruff"),
        ([sys.executable, "-m", "pylint", *SOURCES], "Pylint"),
        ([sys.executable, "-m", "pytest", "-q"], "pytest"),
    ]

    results = [(description, *run_command(cmd, description)) for cmd, description in commands]

    print(f"\n{'='*60}")
    print("Summary")
    print("=" * 60)
    for description, success, _ in results:
        print(f"{description}: {'passed' if success else 'FAILED'}")

    failed = [(d, out) for d, ok, out in results if not ok]
    for description, output in failed:
        if output.strip():
            print(f"\n--- {description} errors ---")
            print(output)

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
