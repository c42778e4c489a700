"""
Start script that applies the lifecycle migrations before starting the API.

The archive tables, orchestration run table and maintenance tables must exist
before the maintenance scheduler takes its first lease, so the API refuses to
start when `alembic upgrade head` fails.

Usage:
    python scripts/start_with_migrations.py
    python scripts/start_with_migrations.py --port 4000 --no-reload
    python scripts/start_with_migrations.py --database-url postgresql://...
"""
import subprocess
import sys
import os
import argparse
from pathlib import Path


PROJECT_DIR = Path(__file__).parent.parent


def run_migrations(database_url=None):
    """Run `alembic upgrade head`; returns False when it fails."""
    cmd = ["alembic"]
    if database_url:
        cmd += ["-x", f"database_url={database_url}"]
    cmd += ["upgrade", "head"]

    print("=" * 60)
    print("Running lifecycle migrations...")
    print("=" * 60)

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, cwd=str(PROJECT_DIR))
    except FileNotFoundError:
        print("[ERROR] 'alembic' command not found.")
        print("   Install the project first: pip install -e .")
        return False

    if result.returncode != 0:
        print("[ERROR] Migration failed!")
        print("\nSTDOUT:")
        print(result.stdout)
        print("\nSTDERR:")
        print(result.stderr)
        return False

    print("[OK] Migrations completed successfully")
    print("=" * 60)
    return True


def start_application(host="0.0.0.0", port=4000, reload=True):
    """Replace this process with uvicorn serving the lifecycle API."""
    os.chdir(PROJECT_DIR)

    print("\n" + "=" * 60)
    print("Starting application...")
    print(f"  Host: {host}")
    print(f"  Port: {port}")
    print(f"  Reload: {reload}")
    print("=" * 60 + "\n")

    cmd = ["uvicorn", "scheduler_lifecycle.main:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")

    os.execvp("uvicorn", cmd)


def main():
    parser = argparse.ArgumentParser(description="Run lifecycle migrations and start the API")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=4000, help="Port to bind to (default: 4000)")
    parser.add_argument("--no-reload", action="store_true", help="Disable auto-reload")
    parser.add_argument("--skip-migrations", action="store_true", help="Skip running migrations")
    parser.add_argument("--database-url", help="Override DATABASE_URL for the migration run")

    args = parser.parse_args()

    if not args.skip_migrations:
        if not run_migrations(args.database_url):
            print("\n[ERROR] Failed to run migrations. Application will not start.")
            sys.exit(1)
    else:
        print("[WARN] Skipping migrations (--skip-migrations flag used)")

    start_application(host=args.host, port=args.port, reload=not args.no_reload)


if __name__ == "__main__":
    main()
