"""Temporary on-disk storage for downloaded layer archives."""

import os
import tempfile
from pathlib import Path
from typing import AsyncIterable, BinaryIO, Optional

import aiofiles


class LayerBlob:
    """Single-read handle on a spooled layer archive.

    Closing the blob removes the spool file; ``close`` may be called
    more than once.
    """

    def __init__(self, path: Path, size: int) -> None:
        self.path = Path(path)
        self.size = size
        self.closed = False
        self._file: Optional[BinaryIO] = None

    def __enter__(self) -> "LayerBlob":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @classmethod
    async def spool(
        cls, chunks: AsyncIterable[bytes], work_dir: Optional[str] = None
    ) -> "LayerBlob":
        """Write an async stream of chunks to a new spool file.

        Args:
            chunks: Layer archive data
            work_dir: Directory for the spool file (system temp dir if None)

        Returns:
            LayerBlob positioned at the start of the data
        """
        fd, name = tempfile.mkstemp(prefix="layer-", suffix=".tar", dir=work_dir)
        os.close(fd)
        size = 0
        try:
            async with aiofiles.open(name, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
                    size += len(chunk)
        except BaseException:
            Path(name).unlink(missing_ok=True)
            raise
        return cls(Path(name), size)

    def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("read from closed layer blob")
        if self._file is None:
            self._file = open(self.path, "rb")
        return self._file.read(size)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._file is not None:
            self._file.close()
            self._file = None
        self.path.unlink(missing_ok=True)
