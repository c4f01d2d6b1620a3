from __future__ import annotations
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Optional

from .jobs import Visibility

MARKER_PREFIX = "#type:"
END_MARKER = "#EXT-X-ENDLIST"

PRIVATE_TEMPLATE_PATH = os.path.join("private", "private.m3u8")
DELETED_TEMPLATE_PATH = os.path.join("deleted", "deleted.m3u8")

_DEFAULT_PRIVATE = f"{MARKER_PREFIX}{Visibility.PRIVATE}\n#EXTM3U\n#EXT-X-VERSION:3\n{END_MARKER}\n"
_DEFAULT_DELETED = f"{MARKER_PREFIX}{Visibility.DELETED}\n#EXTM3U\n#EXT-X-VERSION:3\n{END_MARKER}\n"


class ManifestStateError(Exception):
    """A manifest backup / mark / restore could not be carried out."""


@dataclass(frozen=True)
class CannedManifests:
    """Substitute manifests served in place of a hidden stream. Shared by all jobs."""
    private: str
    deleted: str


def load_canned_manifests(base_path: str, logger=None) -> CannedManifests:
    """
    Reads <base>/private/private.m3u8 and <base>/deleted/deleted.m3u8 once.
    A missing template falls back to a minimal ended playlist with the marker.
    """
    def _read(rel: str, default: str) -> str:
        path = os.path.join(base_path, rel)
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError:
            if logger:
                logger.warning(f"[manifest] canned template missing: {path}. Using built-in default")
            return default

    return CannedManifests(
        private=_read(PRIVATE_TEMPLATE_PATH, _DEFAULT_PRIVATE),
        deleted=_read(DELETED_TEMPLATE_PATH, _DEFAULT_DELETED),
    )


def parse_marker(first_line: Optional[str]) -> str:
    if first_line is not None and first_line.startswith(MARKER_PREFIX):
        return first_line[len(MARKER_PREFIX):].strip()
    return Visibility.PUBLIC


def _replace_file(dst: str, content: str):
    # write next to the target, then swap it in
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=os.path.dirname(dst) or ".")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp, dst)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


class ManifestStateManager:
    """
    Visibility of one job's master.m3u8.

    The state lives in the file itself: no marker means public, a first line
    `#type:private` / `#type:deleted` means restricted. Before a restricted
    template replaces the manifest, the public one is copied to
    master.bck.m3u8 so it can be restored byte for byte.
    """

    def __init__(self, manifest_path: str, backup_path: str, canned: CannedManifests, logger):
        self.manifest_path = manifest_path
        self.backup_path = backup_path
        self.canned = canned
        self.logger = logger

    def _read(self) -> str:
        try:
            with open(self.manifest_path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except OSError as e:
            raise ManifestStateError(f"cannot read manifest {self.manifest_path}: {e}") from e

    def get_status(self) -> str:
        try:
            with open(self.manifest_path, "r", encoding="utf-8", newline="") as f:
                first = f.readline()
        except OSError as e:
            raise ManifestStateError(f"cannot read manifest {self.manifest_path}: {e}") from e
        return parse_marker(first or None)

    def backup(self):
        data = self._read()
        first = data.splitlines()[0] if data else None
        if parse_marker(first) != Visibility.PUBLIC:
            raise ManifestStateError("cannot back up a non-master manifest")
        try:
            _replace_file(self.backup_path, data)
        except OSError as e:
            raise ManifestStateError(f"cannot write backup {self.backup_path}: {e}") from e

    def _mark(self, visibility: str, template: str):
        self.backup()
        self.logger.info(f"[manifest] marking {self.manifest_path} as {visibility}")
        try:
            _replace_file(self.manifest_path, template)
        except OSError as e:
            raise ManifestStateError(f"cannot mark manifest as {visibility}: {e}") from e

    def mark_as_private(self):
        self._mark(Visibility.PRIVATE, self.canned.private)

    def mark_as_deleted(self):
        self._mark(Visibility.DELETED, self.canned.deleted)

    def mark_as_restored(self):
        if not os.path.exists(self.backup_path):
            raise ManifestStateError(f"backup not found: {self.backup_path}")
        self.logger.info(f"[manifest] restoring {self.manifest_path} from backup")
        tmp = self.manifest_path + ".restore"
        try:
            shutil.copyfile(self.backup_path, tmp)
            os.replace(tmp, self.manifest_path)
        except OSError as e:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise ManifestStateError(f"cannot restore manifest: {e}") from e

    def ensure_ended(self) -> bool:
        """Appends the end-of-stream tag if missing. Returns True when the file was rewritten."""
        data = self._read()
        if END_MARKER in data:
            return False
        if data and not data.endswith("\n"):
            data += "\n"
        data += END_MARKER + "\n"
        try:
            _replace_file(self.manifest_path, data)
        except OSError as e:
            raise ManifestStateError(f"cannot write manifest {self.manifest_path}: {e}") from e
        return True
