"""Local invoice file store"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Tuple

from clinicpos.core.config import settings

logger = logging.getLogger(__name__)


class InvalidFilenameError(ValueError):
    pass


def validate_invoice_filename(filename: str) -> str:
    """Only bare *.pdf names; no directories, no traversal"""
    if not filename or not filename.lower().endswith(".pdf") or ".." in filename or "/" in filename or "\\" in filename:
        raise InvalidFilenameError("Invalid filename")
    return filename


class LocalFileStorage:
    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.INVOICE_DIR)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def path_for(self, filename: str) -> Path:
        return self.root / validate_invoice_filename(filename)

    def save_file(self, source_path: str, filename: str) -> str:
        """
        Move a generated file into the store.

        Raises:
            FileNotFoundError: the source does not exist
        """
        if not os.path.exists(source_path):
            raise FileNotFoundError(f"File not found: {source_path}")
        self.ensure_root()
        target = self.path_for(filename)
        if os.path.abspath(source_path) != os.path.abspath(target):
            shutil.move(source_path, target)
        logger.info(f"Stored invoice file {target}")
        return str(target)

    def open_file(self, filename: str) -> Tuple[Path, bool]:
        """(path, exists)"""
        path = self.path_for(filename)
        return path, path.is_file()

    def delete_file(self, filename: str) -> bool:
        path = self.path_for(filename)
        if path.is_file():
            path.unlink()
            logger.info(f"Deleted invoice file {path}")
            return True
        return False


def get_storage() -> LocalFileStorage:
    return LocalFileStorage()
