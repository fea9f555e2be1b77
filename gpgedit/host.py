"""
The interface between gpgedit and the editor hosting it.

The host owns buffers and talks to the user. Everything it is asked to do is
synchronous: prompts block until they are answered.
"""

import enum
import itertools
import logging
import pathlib
import typing

import attr

log = logging.getLogger(__name__)

_buffer_ids = itertools.count(1)

# Per-buffer settings that would copy plaintext onto the disk.
HARDENED = {
    'swapfile': False,
    'undofile': False,
    'backup': False,
    'writebackup': False,
}


class Level(enum.Enum):
    INFO = 'info'
    WARNING = 'warning'
    ERROR = 'error'


LOG_LEVELS = {
    Level.INFO: logging.INFO,
    Level.WARNING: logging.WARNING,
    Level.ERROR: logging.ERROR,
}


@attr.s(eq=False)
class Buffer:
    name: str = attr.ib()
    path: typing.Optional[pathlib.Path] = attr.ib(default=None)
    lines: typing.List[str] = attr.ib(factory=list)
    eol: bool = attr.ib(default=True)
    modified: bool = attr.ib(default=False)
    settings: typing.Dict[str, typing.Any] = attr.ib(factory=dict)
    id: int = attr.ib(factory=lambda: next(_buffer_ids))

    @classmethod
    def for_path(cls, path: pathlib.Path) -> 'Buffer':
        return cls(name=path.name, path=path)

    @property
    def text(self) -> str:
        text = '\n'.join(self.lines)
        if self.lines and self.eol:
            text += '\n'
        return text

    @text.setter
    def text(self, value: str) -> None:
        # Only '\n' ends a line: '\r', form feeds and the like are content.
        lines = value.split('\n')
        if lines[-1] == '':
            lines.pop()
        self.lines = lines
        self.eol = value.endswith('\n') or not value

    def encode(self) -> bytes:
        return self.text.encode('utf-8', errors='surrogateescape')

    def decode(self, data: bytes) -> None:
        self.text = data.decode('utf-8', errors='surrogateescape')

    def wipe(self) -> None:
        self.lines = []
        self.eol = True
        self.modified = False


class Host:
    """
    Base class for editors hosting gpgedit.

    Subclasses implement the prompts. Notices default to the log.
    """

    def __init__(self, settings: typing.Optional[typing.Dict[str, typing.Any]] = None):
        self.settings: typing.Dict[str, typing.Any] = {'history': True}
        self.settings.update(settings or {})

    def harden(self, buffer: Buffer) -> None:
        """Stop the host from keeping copies of a buffer's contents."""
        log.debug(f"Hardening buffer {buffer.name}")
        buffer.settings.update(HARDENED)

    def notify(self, message: str, level: Level = Level.INFO) -> None:
        """Show a transient notice."""
        log.log(LOG_LEVELS[level], message)

    def warn(self, message: str) -> None:
        self.notify(message, Level.WARNING)

    def acknowledge(self, message: str) -> None:
        """Show a notice the user must acknowledge before continuing."""
        raise NotImplementedError

    def confirm(self, message: str) -> bool:
        raise NotImplementedError

    def choose(self, title: str, choices: typing.Sequence[str]) -> str:
        """Present a numbered menu and return the raw answer."""
        raise NotImplementedError

    def show(self, buffer: Buffer, on_hide: typing.Callable[[], None]) -> None:
        """
        Display a scratch buffer for editing.

        on_hide must be called once the buffer is hidden, closed or written.
        """
        raise NotImplementedError
