"""
Art-Net Fixture State Store
===========================

Small key/value blob store used to persist each fixture's power-on default
state between runs. Every key maps to one JSON file in the store directory:

    ~/.artnet_fixture/<name>_<node id>_default

The store is only touched when a fixture is constructed (load) and on
SAVEDEFAULT (save), never on the per-message output path.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union


logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = Path.home() / ".artnet_fixture"


class FixtureStoreError(Exception):
    """Raised when a record cannot be read, decoded or written."""


class FixtureStateStore:
    """
    JSON file store keyed by string name.

    Examples:
        store = FixtureStateStore("/var/lib/artnet")
        store.save("hall_1a2b_default", {"red": 255, "green": 0, "blue": 0})
        store.load("hall_1a2b_default")  # -> {'red': 255, 'green': 0, 'blue': 0}
    """

    def __init__(self, directory: Union[str, Path] = DEFAULT_STORE_DIR):
        """
        Args:
            directory: Directory holding the record files. It is created on
                       the first save, an already existing directory is fine.
        """
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        """Return the file path of a key (path separators are replaced)."""
        safe_key = key.replace("/", "_").replace("\\", "_")
        if safe_key in ("", ".", ".."):
            raise FixtureStoreError(f"Invalid store key: {key!r}")
        return self.directory / safe_key

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def load(self, key: str) -> Optional[dict]:
        """
        Load a record.

        Args:
            key: Record name

        Returns:
            The decoded record, or None if no record exists

        Raises:
            FixtureStoreError: if the file cannot be read or is not valid JSON
        """
        path = self.path_for(key)
        if not path.is_file():
            logger.debug(f"No stored record for {key}")
            return None

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise FixtureStoreError(f"Failed to load {path}: {e}") from e

        logger.debug(f"Loaded {key}: {data}")
        return data

    def save(self, key: str, data) -> None:
        """
        Save a record, replacing any previous one.

        Args:
            key: Record name
            data: JSON serializable object

        Raises:
            FixtureStoreError: if the directory cannot be created or the
                               file cannot be written
        """
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FixtureStoreError(f"Failed to create directory {self.directory}: {e}") from e

        try:
            text = json.dumps(data)
            with open(path, "w", encoding="utf-8") as f:
                f.write(text)
        except (OSError, TypeError, ValueError) as e:
            raise FixtureStoreError(f"Failed to save {path}: {e}") from e

        logger.info(f"Saved {key} to {path}")
