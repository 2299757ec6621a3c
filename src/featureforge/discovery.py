from pathlib import Path

SKIP_DIRS = {
    ".git",
    "__pycache__",
    ".venv",
    "venv",
    "node_modules",
    ".tox",
    "dist",
    "build",
}


def find_project_root(start_path: Path | None = None) -> Path:
    """Find project root by looking for common project markers."""
    if start_path is None:
        start_path = Path.cwd()

    markers = ["featureforge.yaml", "pyproject.toml", ".git"]

    current = start_path.resolve()
    for parent in [current, *current.parents]:
        if any((parent / marker).exists() for marker in markers):
            return parent

    return start_path.resolve()


def find_definitions_file(
    filenames: tuple[str, ...] = ("definitions.py", "schema.yaml", "schema.json"),
    root: Path | None = None,
) -> Path | None:
    """
    Search the project for a definitions file or schema document.

    Filenames are tried in order; the first match wins.
    """
    if root is None:
        root = find_project_root()

    for filename in filenames:
        for path in sorted(root.rglob(filename)):
            if not any(part in SKIP_DIRS for part in path.parts):
                return path.resolve()

    return None
