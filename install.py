#!/usr/bin/env python3
"""Cross-platform install script for campchat.

Usage:
    python install.py          # Install into .venv
    python install.py --dev    # Also install pytest tooling
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"
    pip = os.path.join(venv_dir, "Scripts" if is_windows else "bin", "pip")

    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])

    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = ".[dev]" if dev else "."
    print(f"Installing campchat ({target})...")
    subprocess.check_call([pip, "install", "-e", target], cwd=project_dir)

    # Config files are only created when missing
    for src, dst in [("config.example.yaml", "campchat.yaml"), (".env.example", ".env")]:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if not os.path.exists(dst_path) and os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"
    print()
    print("campchat is installed.")
    print("Next steps:")
    print("  1. Edit campchat.yaml - set widget.campground_id and the API base URL")
    print("  2. Edit .env - CAMPCHAT_AUTH_TOKEN for staff or signed-in guests")
    print(f"  3. {activate_cmd}")
    print("  4. python -m campchat config-check")
    print("  5. python -m campchat chat")


if __name__ == "__main__":
    main()
