#!/usr/bin/env python3
"""
Startup script for container deployment.
Runs migrations and creates the system admin if configured.
"""

import os
import subprocess
import sys


def run_command(cmd: list[str], description: str) -> bool:
    """Run a command and return success status."""
    print(f"\n=== {description} ===")
    try:
        subprocess.run(cmd, check=True)
        return True
    except subprocess.CalledProcessError as e:
        print(f"Warning: {description} failed with code {e.returncode}")
        return False


def main():
    print("\n" + "=" * 50)
    print("Smile Stars Startup Script")
    print("=" * 50)

    if not run_command(["alembic", "upgrade", "head"], "Running database migrations"):
        sys.exit(1)

    # Create the system admin if environment variables are set
    email = os.environ.get("SYSTEM_ADMIN_EMAIL", "").strip()
    password = os.environ.get("SYSTEM_ADMIN_PASSWORD", "").strip()

    if email and password:
        name = os.environ.get("SYSTEM_ADMIN_NAME", "System Admin").strip()

        print("\n=== Creating System Admin ===")
        result = subprocess.run([
            sys.executable, "scripts/create_system_admin.py",
            "--email", email,
            "--password", password,
            "--name", name,
        ])
        # An existing admin is not an error
        if result.returncode != 0:
            print("Note: system admin creation returned non-zero (may already exist)")
    else:
        print("\nSkipping system admin creation (SYSTEM_ADMIN_EMAIL/PASSWORD not set)")

    port = os.environ.get("PORT", "8000")
    print(f"\n=== Starting uvicorn on port {port} ===\n")

    os.execvp("uvicorn", [
        "uvicorn",
        "smilestars.main:app",
        "--host", "0.0.0.0",
        "--port", port,
    ])


if __name__ == "__main__":
    main()
