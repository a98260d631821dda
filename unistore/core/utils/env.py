from __future__ import annotations

import os
from pathlib import Path


def load_env_file_if_present(path: str | Path = ".env", override: bool = False) -> dict[str, str]:
    """Load simple KEY=VALUE pairs from a .env file if present.

    Named store configurations read credentials such as ``AWS_SECRET_ACCESS_KEY``
    or ``AZURE_STORAGE_CONNECTION_STRING`` from the environment; this lets them
    live in a local `.env` during development.

    Returns a dict of loaded key-values (also updates os.environ for the process).
    Lines starting with '#' and an optional leading ``export`` are ignored.
    Quoted values are unquoted.
    """
    env_path = Path(path)
    loaded: dict[str, str] = {}
    if not env_path.exists():
        return loaded

    for line in env_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :]
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if override or key not in os.environ:
            os.environ[key] = value
        loaded[key] = value
    return loaded
