"""Filesystem helpers."""

from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path


def copy_file(src: str | os.PathLike[str], dst: str | os.PathLike[str]) -> None:
    """Copy ``src`` to ``dst``, creating parent directories.

    A newly created destination gets the permission bits of the source.
    """
    source = Path(src)
    destination = Path(dst)
    mode = stat.S_IMODE(source.stat().st_mode)
    with source.open("rb") as reader:
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(destination, os.O_RDWR | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as writer:
            shutil.copyfileobj(reader, writer)
            writer.flush()
            os.fsync(writer.fileno())