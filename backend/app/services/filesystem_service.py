import logging
import os
from pathlib import Path

from app.config.settings import get_settings
from app.schemas.filesystem import FileInfoOut

logger = logging.getLogger(__name__)


class FilesystemService:
    """Directory listing and whole-file read/write for the file manager.

    When `fs_allowed_roots` is configured every path must resolve inside one
    of the roots; otherwise any path the process can reach is allowed.
    """

    def __init__(self) -> None:
        settings = get_settings()
        self.allowed_roots = [
            Path(value).expanduser().resolve()
            for value in getattr(settings, "fs_allowed_roots", [])
            if value
        ]

    def _is_within_allowed_roots(self, path: Path) -> bool:
        if not self.allowed_roots:
            return True
        # Resolve both the Path object and use os.path.realpath to catch symlink escapes
        resolved = path.resolve()
        real = Path(os.path.realpath(str(path)))
        for root in self.allowed_roots:
            try:
                resolved.relative_to(root)
                real.relative_to(root)
                return True
            except ValueError:
                continue
        return False

    def _resolve_input(self, raw_path: str) -> Path:
        if raw_path is None or raw_path.strip() == "":
            raise ValueError("Path must not be empty")
        target = Path(raw_path).expanduser()
        if not self._is_within_allowed_roots(target):
            raise ValueError(f"Path is outside allowed roots: {target}")
        return target

    @staticmethod
    def _file_info(entry: os.DirEntry) -> FileInfoOut:
        path = Path(entry.path)
        try:
            is_dir = entry.is_dir()
        except OSError:
            is_dir = False
        size: int | None = None
        modified: str | None = None
        # metadata is best effort; a broken symlink still gets listed
        try:
            stat = entry.stat()
            if not is_dir:
                size = stat.st_size
            modified = str(int(stat.st_mtime))
        except OSError:
            pass
        return FileInfoOut(
            name=entry.name,
            path=str(path),
            is_directory=is_dir,
            size=size,
            modified=modified,
            extension=path.suffix[1:] if path.suffix else None,
        )

    def list_directory(self, raw_path: str) -> list[FileInfoOut]:
        target = self._resolve_input(raw_path)
        try:
            with os.scandir(target) as it:
                files = [self._file_info(entry) for entry in it]
        except OSError as e:
            raise ValueError(f"Failed to read directory: {e}") from e
        files.sort(key=lambda item: (not item.is_directory, item.name.lower()))
        return files

    def read_file(self, raw_path: str) -> str:
        target = self._resolve_input(raw_path)
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ValueError(f"Failed to read file: {e}") from e

    def write_file(self, raw_path: str, content: str) -> None:
        target = self._resolve_input(raw_path)
        try:
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ValueError(f"Failed to write file: {e}") from e
        logger.info("Wrote %d chars to %s", len(content), target)
