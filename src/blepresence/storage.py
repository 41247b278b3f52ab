"""Registry persistence as a single JSON document.

The document is always read and written whole. A missing or unreadable
document is an empty registry, never a fatal error.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from blepresence.exceptions import PersistenceError
from blepresence.ingestion.normalize import decode_tree
from blepresence.models.registry import RegistryDocument

_logger = logging.getLogger(__name__)


class PersistenceAdapter(Protocol):
    """Structural persistence interface.

    The tracker only depends on this protocol, so tests can pass in-memory
    or failing doubles while production uses :class:`JsonFileStore`.
    """

    def load(self) -> RegistryDocument: ...

    def save(self, document: RegistryDocument) -> None: ...


class JsonFileStore:
    """Stores the registry document as pretty-printed UTF-8 JSON."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RegistryDocument:
        """Read the document, decoding legacy ``\\uXXXX`` escaped text.

        Returns an empty document when the file is missing, unreadable,
        not JSON, or not shaped like a registry.
        """
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            _logger.info("No registry document at %s, starting empty", self._path)
            return RegistryDocument.empty()
        except (OSError, UnicodeDecodeError) as exc:
            _logger.warning("Unreadable registry document %s (%s), starting empty", self._path, exc)
            return RegistryDocument.empty()

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            _logger.warning("Invalid JSON in registry document %s (%s), starting empty", self._path, exc)
            return RegistryDocument.empty()

        if not isinstance(data, dict):
            _logger.warning("Registry document %s is not an object, starting empty", self._path)
            return RegistryDocument.empty()

        try:
            return RegistryDocument.model_validate(decode_tree(data))
        except ValidationError as exc:
            _logger.warning(
                "Registry document %s has an invalid shape (%d errors), starting empty",
                self._path,
                exc.error_count(),
            )
            return RegistryDocument.empty()

    def save(self, document: RegistryDocument) -> None:
        """Atomically replace the document on disk.

        Raises
        ------
        PersistenceError
            If the directory cannot be created, the file cannot be written,
            or the document holds text that cannot be encoded as UTF-8.
        """
        text = json.dumps(document.to_json_dict(), ensure_ascii=False, indent=2)
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except (OSError, UnicodeError) as exc:
            raise PersistenceError(f"failed to write registry document: {exc}", path=str(self._path)) from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    _logger.debug("Could not remove temp file %s", tmp_name, exc_info=True)

    def reset(self) -> None:
        """Overwrite the document with an empty registry."""
        self.save(RegistryDocument.empty())
