"""
Atomic token file writes (write temp file, then rename over the target).
Readers of the token path see either the previous token or the new one, never a partial write.
The file lives on a shared tmpfs volume; owner-only permissions.
"""
import os
from pathlib import Path

# Owner read/write only
TOKEN_FILE_MODE = 0o600

# Owner rwx only; traversable by the owning user
TOKEN_DIR_MODE = 0o700


class TokenWriteError(Exception):
    """Creating the directory, writing the temp file or renaming it failed. Cause is chained."""


class TokenWriter:
    def __init__(self, path: str | os.PathLike):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def tmp_path(self) -> Path:
        # Same directory as the target: os.replace is only atomic within one filesystem
        return self._path.with_name(self._path.name + ".tmp")

    def write(self, token: str | bytes) -> None:
        """
        Atomically replace the token file with `token` (no trailing newline added).
        Raises TokenWriteError; the temp file never outlives this call.
        """
        data = token.encode("utf-8") if isinstance(token, str) else bytes(token)
        try:
            self._path.parent.mkdir(mode=TOKEN_DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise TokenWriteError(f"create token directory {self._path.parent}: {e}") from e

        tmp = self.tmp_path
        try:
            self._write_tmp(tmp, data)
        except OSError as e:
            note = self._remove_tmp(tmp)
            raise TokenWriteError(f"write temp token file {tmp}: {e}{note}") from e

        try:
            os.replace(tmp, self._path)
        except OSError as e:
            note = self._remove_tmp(tmp)
            raise TokenWriteError(f"rename token file {tmp} -> {self._path}: {e}{note}") from e

    @staticmethod
    def _write_tmp(tmp: Path, data: bytes) -> None:
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, TOKEN_FILE_MODE)
        try:
            # O_CREAT mode does not apply to a leftover temp file from an earlier crash
            os.fchmod(fd, TOKEN_FILE_MODE)
            view = memoryview(data)
            while view:
                written = os.write(fd, view)
                view = view[written:]
            os.fsync(fd)
        finally:
            os.close(fd)

    @staticmethod
    def _remove_tmp(tmp: Path) -> str:
        """
        Best-effort removal of the temp file. Returns "" or a note about the cleanup failure
        to append to the error being raised; the original error stays the reported one.
        """
        try:
            tmp.unlink(missing_ok=True)
        except OSError as e:
            return f" (temp file cleanup also failed: {e})"
        return ""
