"""
Version utility for the Mirror Play client.

Reads the version from installed package metadata, falling back to
pyproject.toml when running from a source checkout.
"""

from pathlib import Path


def get_version() -> str:
    """
    Get the client version.

    Priority:
    1. importlib.metadata.version() - when installed as a package
    2. pyproject.toml - when running from source

    Returns:
        Version string (e.g., "0.1.0") or "dev" if unavailable
    """
    try:
        from importlib.metadata import version

        return version("mirrorplay-client")
    except Exception:
        pass

    try:
        import tomllib

        current = Path(__file__).resolve()
        for parent in current.parents:
            pyproject_path = parent / "pyproject.toml"
            if pyproject_path.exists():
                with open(pyproject_path, "rb") as f:
                    data = tomllib.load(f)
                return data.get("project", {}).get("version", "dev")
    except Exception:
        pass

    return "dev"


__version__ = get_version()
