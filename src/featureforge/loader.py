import importlib.util
import sys
from pathlib import Path

from loguru import logger

from featureforge.errors import DefinitionsLoadError
from featureforge.registry import SchemaRegistry
from featureforge.store import FeatureStore

DOCUMENT_SUFFIXES = (".yaml", ".yml", ".json")


def load_definitions(target: str | None = None) -> SchemaRegistry:
    """
    Load a schema registry from a definitions file or schema document.

    Python files are imported and must define exactly one SchemaRegistry
    or FeatureStore. YAML and JSON files are read as schema documents.

    Args:
        target: Path to definitions.py or a schema document. Defaults to "definitions.py".

    Returns:
        The registry defined by the file

    Raises:
        FileNotFoundError: If the target file doesn't exist
        ValueError: If the target is neither a .py file nor a schema document
        DefinitionsLoadError: If file fails to load, defines no registry, or defines several

    Example:
        registry = load_definitions("project/definitions.py")
        registry.list_views()
    """
    if target is None:
        target = "definitions.py"

    path = Path(target)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if path.suffix in DOCUMENT_SUFFIXES:
        from featureforge.document import load_registry

        logger.debug(f"Loading schema document {path}")
        return load_registry(path)

    if not path.suffix == ".py":
        raise ValueError(f"Expected a Python file or schema document, got: {path}")

    logger.debug(f"Loading definitions from {path}")

    # Add parent directory to path so imports within the file work
    parent = str(path.parent.resolve())
    if parent not in sys.path:
        sys.path.insert(0, parent)

    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise DefinitionsLoadError(f"Failed to create module spec for {path}")

    module = importlib.util.module_from_spec(spec)

    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise DefinitionsLoadError(
            f"Failed to load {path}",
            cause=e,
        ) from e

    found = [
        obj.registry if isinstance(obj, FeatureStore) else obj
        for obj in vars(module).values()
        if isinstance(obj, (SchemaRegistry, FeatureStore))
    ]
    registries = list({id(r): r for r in found}.values())

    if not registries:
        raise DefinitionsLoadError(
            f"No SchemaRegistry or FeatureStore found in {path}",
            hint="Make sure you have something like:\n\n"
            "  registry = ff.SchemaRegistry(nodes=[...])",
        )

    if len(registries) > 1:
        raise DefinitionsLoadError(
            f"Multiple registries found in {path}",
            hint="Expected exactly one SchemaRegistry or FeatureStore per file.",
        )

    registry = registries[0]
    logger.debug(f"Loaded '{registry.name}' with {len(registry.nodes())} nodes")

    return registry
