"""Platform file actions: save-as downloads, opening text files, printing."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileIOResult:
    """Outcome of a file action.

    ``supported`` is ``False`` when the platform cannot perform the action at
    all; ``ok`` is ``False`` when it was attempted but did not happen (for
    example the user cancelled a pick). ``text`` holds picked file contents.
    """

    supported: bool
    ok: bool
    message: str = ""
    path: Optional[Path] = None
    text: Optional[str] = None


class FileIO(ABC):
    @abstractmethod
    def download_bytes(self, filename: str, data: bytes, mime_type: str) -> FileIOResult:
        ...

    @abstractmethod
    def pick_text_file(self, accepted_extensions: Iterable[str]) -> FileIOResult:
        ...

    @abstractmethod
    def trigger_print(self) -> FileIOResult:
        ...


def _unsupported(action: str) -> FileIOResult:
    message = f"{action} is not supported on this platform"
    logger.info(message)
    return FileIOResult(supported=False, ok=False, message=message)


class UnsupportedFileIO(FileIO):
    """Used where no file system or printer is available; never raises."""

    def download_bytes(self, filename: str, data: bytes, mime_type: str) -> FileIOResult:
        return _unsupported(f"Download of {filename!r}")

    def pick_text_file(self, accepted_extensions: Iterable[str]) -> FileIOResult:
        return _unsupported("File import")

    def trigger_print(self) -> FileIOResult:
        return _unsupported("Printing")


class LocalFileIO(FileIO):
    """Writes downloads into ``export_dir`` and reads a preselected file.

    ``import_path`` plays the role of the file chosen in an open dialog; when
    it is ``None`` a pick behaves like a cancelled dialog.
    """

    def __init__(self, export_dir: str | Path, import_path: str | Path | None = None) -> None:
        self.export_dir = Path(export_dir)
        self.import_path = None if import_path is None else Path(import_path)

    def download_bytes(self, filename: str, data: bytes, mime_type: str) -> FileIOResult:
        target = self.export_dir / Path(filename).name
        try:
            self.export_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            logger.error("Cannot write %s: %s", target, exc)
            return FileIOResult(supported=True, ok=False, message=str(exc), path=target)
        logger.info("Wrote %s (%s, %d bytes)", target, mime_type, len(data))
        return FileIOResult(supported=True, ok=True, message=f"Saved {target}", path=target)

    def pick_text_file(self, accepted_extensions: Iterable[str]) -> FileIOResult:
        if self.import_path is None:
            return FileIOResult(supported=True, ok=False, message="No file selected")
        accepted = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in accepted_extensions}
        suffix = self.import_path.suffix.lower()
        if accepted and suffix not in accepted:
            return FileIOResult(
                supported=True,
                ok=False,
                message=f"Expected one of {', '.join(sorted(accepted))}, got {suffix or 'no extension'}",
                path=self.import_path,
            )
        try:
            text = self.import_path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Cannot read %s: %s", self.import_path, exc)
            return FileIOResult(supported=True, ok=False, message=str(exc), path=self.import_path)
        return FileIOResult(supported=True, ok=True, path=self.import_path, text=text)

    def trigger_print(self) -> FileIOResult:
        return _unsupported("Printing")


__all__ = ["FileIO", "FileIOResult", "LocalFileIO", "UnsupportedFileIO"]
