#!/usr/bin/env python3
"""
Setup script for YouTube Meta Logger.
Installs the project, Playwright and the Chromium browser.
"""

import subprocess
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent


def install_steps(dev: bool):
    target = f"{PROJECT_ROOT}[test]" if dev else str(PROJECT_ROOT)
    return [
        (
            "Installing YouTube Meta Logger" + (" with test extras" if dev else ""),
            [sys.executable, "-m", "pip", "install", "-e", target],
        ),
        ("Installing Chromium browser", [sys.executable, "-m", "playwright", "install", "chromium"]),
    ]


def run_step(label, argv) -> bool:
    print(f"\n📦 {label}...")
    proc = subprocess.run(argv, capture_output=True, text=True)
    output = proc.stdout if proc.returncode == 0 else proc.stderr
    status = "✅" if proc.returncode == 0 else "❌"
    print(f"{status} {label} ({'ok' if proc.returncode == 0 else f'exit {proc.returncode}'})")
    if output.strip():
        print(output.rstrip())
    return proc.returncode == 0


def main():
    print("🚀 Setting up YouTube Meta Logger...")

    if sys.version_info < (3, 9):
        print("❌ Python 3.9+ required")
        sys.exit(1)

    for label, argv in install_steps(dev="--dev" in sys.argv[1:]):
        if not run_step(label, argv):
            sys.exit(1)

    print("\n✅ Setup complete! You can now run:")
    print("   yt-meta-logger watch --auto-export")


if __name__ == "__main__":
    main()
