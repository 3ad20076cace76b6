#!/usr/bin/env python3
"""
FileConverter Test Runner

Usage:
    python test.py           # Run all tests
    python test.py quick     # Skip slow tests (those needing a real FFmpeg)
    python test.py ffmpeg    # Only the end-to-end tests against a real FFmpeg
    python test.py coverage  # Run with coverage report
    python test.py failed    # Re-run the tests that failed last time
    python test.py parser    # Test one module (tests/test_parser.py) or filter by name
"""

import os
import subprocess
import sys

MODES = {
    "quick": (["-v", "--tb=short", "-m", "not slow"], "[QUICK] Running quick tests (skipping slow)..."),
    "ffmpeg": (["-v", "--tb=short", "-m", "requires_ffmpeg"], "[FFMPEG] Running end-to-end conversions..."),
    "coverage": (
        ["--cov=fileconverter", "--cov-report=term-missing", "--cov-report=html:coverage_html", "-v"],
        "[COVERAGE] Running tests with coverage report...",
    ),
    "failed": (["--lf", "-v"], "[RETRY] Re-running failed tests..."),
}


def build_command(args):
    cmd = [sys.executable, "-m", "pytest", "tests/"]

    if not args:
        cmd.extend(["-v", "--tb=short"])
        print("[TEST] Running all tests...\n")
        return cmd

    mode = args[0]
    if mode in MODES:
        options, banner = MODES[mode]
        cmd.extend(options)
        print(f"{banner}\n")
        return cmd

    test_file = f"tests/test_{mode}.py"
    if os.path.exists(test_file):
        print(f"[MODULE] Running tests for {mode}...\n")
        return [sys.executable, "-m", "pytest", test_file, "-v", "--tb=short"]

    cmd.extend(["-v", "--tb=short", "-k", mode])
    print(f"[FILTER] Running tests matching '{mode}'...\n")
    return cmd


def main():
    os.chdir(os.path.dirname(os.path.abspath(__file__)))
    cmd = build_command(sys.argv[1:])

    try:
        result = subprocess.run(cmd)
    except KeyboardInterrupt:
        print("\n\n[ABORT] Tests interrupted by user")
        return 1

    print("\n" + "=" * 60)
    if result.returncode == 0:
        print("[PASS] All tests passed!")
    else:
        print(f"[FAIL] Tests failed (exit code: {result.returncode})")
    print("=" * 60)

    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
