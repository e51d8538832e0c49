#!/usr/bin/env python3
"""
Setup script for the UI lifecycle monitor.
Installs the package and the Chromium browser Playwright drives.
"""

import subprocess
import sys
from pathlib import Path


def run_command(cmd, description):
    """Run a command and report status."""
    print(f"\n📦 {description}...")
    try:
        result = subprocess.run(cmd, check=True, capture_output=True, text=True)
        print(f"✅ {description} completed")
        if result.stdout:
            print(result.stdout)
        return True
    except subprocess.CalledProcessError as e:
        print(f"❌ {description} failed")
        if e.stderr:
            print(e.stderr)
        return False


def main():
    print("🚀 Setting up the UI lifecycle monitor...")

    if sys.version_info < (3, 8):
        print("❌ Python 3.8+ required")
        sys.exit(1)

    repo_root = Path(__file__).resolve().parent.parent
    target = str(repo_root)
    if "--with-tests" in sys.argv[1:]:
        target += "[test]"
    if not run_command(
        [sys.executable, "-m", "pip", "install", "-e", target],
        "Installing ui-lifecycle-monitor",
    ):
        sys.exit(1)

    if not run_command(
        [sys.executable, "-m", "playwright", "install", "chromium"],
        "Installing Chromium browser",
    ):
        sys.exit(1)

    print("\n✅ Setup complete! You can now run:")
    print("   ui-lifecycle-monitor cards <url> --output ./compliance-output")
    print("   ui-lifecycle-monitor nav <url> --output ./nav-output")


if __name__ == "__main__":
    main()
