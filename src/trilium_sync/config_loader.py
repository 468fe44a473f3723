"""
YAML configuration files for trilium-sync.

Three things happen between the files on disk and ``build_config()``:

* discovery: the explicit ``TRILIUM_SYNC_CONFIG`` path, then the project
  directory ``.trilium_sync/``, then ``~/.config/trilium_sync/``;
* loading: each file is parsed with a private ``SafeLoader`` subclass that
  adds ``!include <file>`` (relative to the including file, cycles are an
  error);
* merging: files are layered from lowest to highest precedence, whole
  top-level sections replacing each other, and ``${VAR}`` /
  ``${VAR:-default}`` references are expanded once at the end.

A missing config is not an error: ``load_hierarchical_config()`` returns
``{}`` and every section falls back to its defaults.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterator, Sequence

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TRILIUM_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".trilium_sync"
CONFIG_NAMES = ("config.yml", "config.yaml")

# ${NAME} or ${NAME:-fallback}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def _env_value(match: re.Match) -> str:
    name, fallback = match.group(1), match.group(2)
    value = os.environ.get(name, "")
    if value:
        return value
    return fallback or ""


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in one string.

    Unset or empty variables expand to the default, or to ``""`` when
    there is none. An unterminated ``${`` is kept literally.
    """
    return _ENV_REF.sub(_env_value, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(item) for key, item in obj.items()}
    if isinstance(obj, list):
        return list(map(_interpolate_recursive, obj))
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


# ---------------------------------------------------------------------------
# Loading with !include
# ---------------------------------------------------------------------------


class IncludeLoader(yaml.SafeLoader):
    """SafeLoader that resolves ``!include``.

    ``chain`` lists the files currently being loaded, outermost first. The
    constructor is registered on this subclass only, so ``yaml.safe_load``
    keeps rejecting the tag.
    """

    def __init__(self, stream, chain: Sequence[Path]):
        super().__init__(stream)
        self.chain = tuple(chain)


def _construct_include(loader: IncludeLoader, node: yaml.ScalarNode) -> Any:
    current = loader.chain[-1]
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = current.parent / target
    target = target.resolve()

    if target in loader.chain:
        cycle = " -> ".join(map(str, (*loader.chain, target)))
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.is_file():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {current})"
        )
    return _load_yaml_with_includes(target, chain=loader.chain)


IncludeLoader.add_constructor("!include", _construct_include)


def _load_yaml_with_includes(path: Path, chain: Sequence[Path] = ()) -> Any:
    """Parse ``path`` and every file it includes."""
    path = path.resolve()
    with path.open(encoding="utf-8") as stream:
        loader = IncludeLoader(stream, (*chain, path))
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _candidate_paths() -> Iterator[Path]:
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        yield Path(explicit).expanduser().resolve()
    project_dir = Path.cwd() / PROJECT_CONFIG_DIR
    for name in CONFIG_NAMES:
        yield project_dir / name
    yield Path.home() / ".config" / "trilium_sync" / CONFIG_NAMES[0]


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first."""
    return [path for path in _candidate_paths() if path.exists()]


def resolve_config_path() -> Path:
    """The config file in effect, or where a new project config would go."""
    found = discover_config_files()
    return found[0] if found else Path.cwd() / PROJECT_CONFIG_DIR / CONFIG_NAMES[0]


_STARTER_CONFIG = """\
# trilium-sync configuration
#
# Every value below is optional. Environment variables take precedence:
#   TRILIUM_URL, TRILIUM_TOKEN, TRILIUM_INSECURE, TRILIUM_DEBUG,
#   TRILIUM_CACHE_TTL, LOG_LEVEL
# Strings may reference the environment as ${VAR} or ${VAR:-default}, and
# any section may be split out with !include other-file.yml
#
# etapi:
#   url: http://localhost:8080
#   token: ${TRILIUM_TOKEN}
#   insecure: false
#   request_timeout: 60
#   cache_ttl: 30
#   cache_size: 256
#
# transfer:
#   temp_dir: null          # system temp directory when unset
#   max_parallel_reads: 8
#   keep_temp: false
#
# logging:
#   level: INFO
#   file: null
#   format: text            # or json
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the config in effect, writing a commented starter if none exists.

    Args:
        target: Where to create the starter file. Defaults to
            ``resolve_config_path()``.
    """
    found = discover_config_files()
    if found:
        logger.debug("Using existing config %s", found[0])
        return found[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one raw dict.

    Raises:
        FileNotFoundError: An ``!include`` target does not exist.
        ValueError: Includes form a cycle.
        yaml.YAMLError: A file is not valid YAML.
    """
    layers = discover_config_files()
    if not layers:
        logger.debug("No config files found; using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in layers[::-1]:
        logger.debug("Reading config %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.error("Cannot load config %s: %s", path, exc)
            raise
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring %s: expected a mapping at the top level, got %s",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)

    return _interpolate_recursive(merged)
