"""Helper to launch the fragment service with uvicorn from Python."""
from __future__ import annotations
import os
import subprocess
import sys

APP_PATH = "moirai_archivist.serve.fastapi_app:app"


def build_command() -> list[str]:
    host = os.getenv("ARCHIVIST_HOST", "127.0.0.1")
    port = os.getenv("ARCHIVIST_PORT", "8000")
    workers = os.getenv("ARCHIVIST_WORKERS", "1")
    return [
        sys.executable,
        "-m",
        "uvicorn",
        APP_PATH,
        "--host", host,
        "--port", str(port),
        "--workers", str(workers),
    ]


def main() -> None:
    subprocess.run(build_command(), check=True)

if __name__ == "__main__":
    main()
