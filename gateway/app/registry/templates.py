"""
Document template catalog.

Named templates are kept as plain files in a single catalog directory.
Each entry binds together:

- a public template identifier (the caller's ``fileId`` or the uploaded
  filename)
- the raw template bytes

The catalog directory is the source of truth: ``list()`` inspects it on
every call, so templates dropped into the directory by other means are
listed as well.

Add and remove are idempotent from the caller's perspective: adding an
existing id replaces it, removing a missing id succeeds.
"""

import logging
import os
import stat
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Union

from pydantic import BaseModel

from gateway.app.errors import InvalidRequest, StorageUnavailable

logger = logging.getLogger(__name__)

TEMPLATE_EXTENSIONS = (
    ".odt",
    ".ods",
    ".odp",
    ".docx",
    ".xlsx",
    ".pptx",
    ".txt",
    ".html",
    ".xml",
)


class TemplateInfo(BaseModel):
    """Catalog listing entry, as returned by ``GET /template``."""

    templateId: str
    filename: str
    size: int
    createdAt: datetime
    updatedAt: datetime


def _timestamp(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class TemplateCatalog:
    """Filesystem-backed template catalog."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser().resolve()

    def ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(
                f"Cannot create template directory {self.root}: {exc}"
            ) from exc

    def _template_path(self, template_id: str) -> Path:
        if (
            not template_id
            or template_id in {".", ".."}
            or template_id.startswith(".")
            or "/" in template_id
            or "\\" in template_id
            or "\x00" in template_id
        ):
            raise InvalidRequest("fileId", f"Invalid fileId: {template_id!r}")
        return self.root / template_id

    def add(self, template_id: str, content: bytes) -> None:
        """Register ``content`` under ``template_id``, replacing any previous entry."""
        target = self._template_path(template_id)

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".tmp-", dir=str(self.root))
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(content)
                os.replace(temp_path, target)
            finally:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
        except OSError as exc:
            raise StorageUnavailable(
                f"Failed to write template {template_id!r}: {exc}"
            ) from exc

        logger.info("template_added", extra={"template_id": template_id})

    def remove(self, template_id: str) -> None:
        target = self._template_path(template_id)

        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageUnavailable(
                f"Failed to remove template {template_id!r}: {exc}"
            ) from exc

        logger.info("template_removed", extra={"template_id": template_id})

    def list(self) -> List[TemplateInfo]:
        try:
            candidates = sorted(os.listdir(self.root))
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageUnavailable(
                f"Failed to list templates in {self.root}: {exc}"
            ) from exc

        templates: List[TemplateInfo] = []
        for filename in candidates:
            if filename.startswith(".") or not filename.endswith(TEMPLATE_EXTENSIONS):
                continue

            try:
                stats = (self.root / filename).stat()
            except OSError as exc:
                logger.error("Error getting stats for %s: %s", filename, exc)
                continue

            if not stat.S_ISREG(stats.st_mode):
                continue

            templates.append(
                TemplateInfo(
                    templateId=filename,
                    filename=filename,
                    size=stats.st_size,
                    # st_birthtime is only available on some platforms
                    createdAt=_timestamp(getattr(stats, "st_birthtime", stats.st_ctime)),
                    updatedAt=_timestamp(stats.st_mtime),
                )
            )

        return templates

    def read(self, template_id: str) -> bytes:
        return self._template_path(template_id).read_bytes()
