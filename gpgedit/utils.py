import fnmatch
import os
import pathlib
import stat
import tempfile
import typing

import click


def matches(path: pathlib.Path, patterns: typing.Iterable[str]) -> bool:
    """Check if the name of a path matches any of a list of glob patterns."""
    return any(fnmatch.fnmatch(path.name, pattern) for pattern in patterns)


def unique(items: typing.Iterable) -> typing.List:
    """Remove duplicates from a sequence, keeping the first occurrence."""
    seen: typing.List = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def is_new_file(path: pathlib.Path) -> bool:
    """Missing and zero-length files are treated as new documents."""
    return not path.exists() or path.stat().st_size == 0


class GPGEditException(click.ClickException):
    pass


class DecryptError(GPGEditException):
    pass


class EncryptError(GPGEditException):
    pass


class NotEncrypted(GPGEditException):
    pass


def replace_atomically(
        path: pathlib.Path,
        write: typing.Callable[[typing.BinaryIO], None]) -> None:
    """
    Write a new version of a file without ever truncating the old one.

    The content is written to a temporary file in the same directory, which
    replaces the original only if write() returns without raising.
    """
    fd, name = tempfile.mkstemp(
        dir=path.parent, prefix=f'.{path.name}.', suffix='.tmp')
    temporary = pathlib.Path(name)
    try:
        with os.fdopen(fd, 'wb') as output:
            write(output)
        if path.exists():
            os.chmod(temporary, stat.S_IMODE(path.stat().st_mode))
        os.replace(temporary, path)
    finally:
        if temporary.exists():
            temporary.unlink()
