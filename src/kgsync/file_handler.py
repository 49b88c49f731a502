"""File I/O for generated source: decoding, atomic writes, containment.

The analyzer reads generated modules through ``read_file_with_encoding``;
the code writer renders pushed entities through ``write_file`` and checks
every target with ``validate_output_path`` so a push never writes outside
the module tree.
"""

import codecs
import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes


def validate_output_path(path: Path, base_dir: Path) -> Path:
    """Resolve *path* and ensure it stays under *base_dir*.

    Raises:
        ValueError: If the resolved path escapes base_dir (e.g. via ``..``
            or a symlink).
    """
    resolved = Path(path).resolve()
    base_resolved = Path(base_dir).resolve()
    if not resolved.is_relative_to(base_resolved):
        raise ValueError(
            f"Output path is outside base directory: {resolved} not under {base_resolved}"
        )
    return resolved


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a source file and return ``(content, encoding)``.

    Python source is UTF-8 unless declared otherwise, so UTF-8 (with or
    without BOM) is tried first.  Anything else is handed to
    charset-normalizer; if detection fails too, the bytes are decoded as
    UTF-8 with replacement characters.  Empty files read as ``""``.
    """
    raw = Path(path).read_bytes()
    if not raw:
        return ("", "utf-8")

    if raw.startswith(codecs.BOM_UTF8):
        return (raw[len(codecs.BOM_UTF8) :].decode("utf-8"), "utf-8-sig")
    try:
        return (raw.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    match = from_bytes(raw).best()
    if match is None:
        return (raw.decode("utf-8", errors="replace"), "utf-8")
    return (str(match), match.encoding)


def write_file(path: Path, content: str, encoding: str = "utf-8") -> int:
    """Atomically replace *path* with *content*.

    Parent directories are created as needed.  The bytes go to a temp file
    in the same directory first, so an interrupted push never leaves a
    half-written module behind.

    Returns:
        Number of bytes written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)

    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(encoded)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(encoded)
