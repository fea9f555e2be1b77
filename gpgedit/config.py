import pathlib
import typing

import attr

DEFAULT_EXECUTABLE = 'gpg --trust-model always'
DEFAULT_PATTERNS = ('*.gpg', '*.pgp', '*.asc')


def _tuple(value: typing.Iterable[str]) -> typing.Tuple[str, ...]:
    """Accept whitespace separated strings as well as sequences."""
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(item for part in value for item in part.split())


def _path(value) -> typing.Optional[pathlib.Path]:
    return pathlib.Path(value).expanduser() if value else None


@attr.s(frozen=True, kw_only=True)
class Config:
    """Everything that changes how files are encrypted and decrypted."""

    executable: str = attr.ib(default=DEFAULT_EXECUTABLE)
    use_agent: bool = attr.ib(default=True)
    tty: bool = attr.ib(default=True)
    prefer_symmetric: bool = attr.ib(default=False)
    prefer_armor: bool = attr.ib(default=False)
    prefer_sign: bool = attr.ib(default=False)
    default_recipients: typing.Tuple[str, ...] = attr.ib(
        default=(), converter=_tuple)
    possible_recipients: typing.Tuple[str, ...] = attr.ib(
        default=(), converter=_tuple)
    home: typing.Optional[pathlib.Path] = attr.ib(
        default=None, converter=_path)
    pipes: bool = attr.ib(default=True)
    patterns: typing.Tuple[str, ...] = attr.ib(
        default=DEFAULT_PATTERNS, converter=_tuple)
    # Let $EDITOR spool plaintext to a disk when no memory backed tempdir exists.
    insecure_tempdir: bool = attr.ib(default=False)

    @executable.validator
    def _check_executable(self, attribute, value):
        if not value.strip():
            raise ValueError("The gpg executable can't be empty")
