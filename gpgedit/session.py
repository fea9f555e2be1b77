import enum
import logging
import pathlib
import typing

import attr

from .config import Config
from .recipients import RecipientList, RecipientRef
from .utils import unique

log = logging.getLogger(__name__)


class State(enum.Enum):
    UNOPENED = 'unopened'
    READING = 'reading'
    ENCRYPTED = 'encrypted'
    PLAINTEXT = 'plaintext'
    EDITING = 'editing'
    WRITING = 'writing'
    CLOSED = 'closed'


@attr.s(eq=False)
class Session:
    """What is needed to encrypt an open file again."""

    buffer_id: int = attr.ib()
    encrypted: bool = attr.ib(default=True)
    recipients: RecipientList = attr.ib(factory=RecipientList)
    options: typing.List[str] = attr.ib(factory=list)
    state: State = attr.ib(default=State.UNOPENED)

    def set_options(self, options: typing.Iterable[str]) -> None:
        self.options = unique(options)
        log.debug(f"Options for buffer {self.buffer_id}: {self.options}")

    def set_recipients(
            self,
            refs: typing.Iterable[RecipientRef],
            mark_encrypted: bool = False) -> None:
        self.recipients = RecipientList(refs)
        log.debug(f"Recipients for buffer {self.buffer_id}: {self.recipients}")
        if mark_encrypted:
            self.encrypted = True

    def transition(self, state: State) -> None:
        log.debug(f"Buffer {self.buffer_id}: {self.state.value} -> {state.value}")
        self.state = state


def default_options(config: Config, path: pathlib.Path) -> typing.List[str]:
    options = ['symmetric' if config.prefer_symmetric else 'encrypt']
    if config.prefer_armor or path.name.endswith('.asc'):
        options.append('armor')
    if config.prefer_sign:
        options.append('sign')
    return options


class SessionTable:
    """
    Sessions for open buffers, and the scratch buffers editing them.

    A scratch buffer only remembers the id of the buffer it edits, so closing
    either one breaks the link.
    """

    def __init__(self):
        self._sessions: typing.Dict[int, Session] = {}
        self._sources: typing.Dict[int, int] = {}

    def create(self, buffer_id: int) -> Session:
        session = Session(buffer_id)
        self._sessions[buffer_id] = session
        return session

    def get(self, buffer_id: int) -> typing.Optional[Session]:
        return self._sessions.get(buffer_id)

    def __contains__(self, buffer_id: int) -> bool:
        return buffer_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> typing.Iterator[Session]:
        return iter(list(self._sessions.values()))

    def link(self, scratch_id: int, source_id: int) -> None:
        self._sources[scratch_id] = source_id

    def unlink(self, scratch_id: int) -> None:
        self._sources.pop(scratch_id, None)

    def scratch_for(self, source_id: int) -> typing.List[int]:
        return [s for s, b in self._sources.items() if b == source_id]

    def lookup_source(self, scratch_id: int) -> typing.Optional[Session]:
        source_id = self._sources.get(scratch_id)
        return None if source_id is None else self._sessions.get(source_id)

    def remove(self, buffer_id: int) -> None:
        session = self._sessions.pop(buffer_id, None)
        if session is not None:
            session.transition(State.CLOSED)
        for scratch_id in self.scratch_for(buffer_id):
            self.unlink(scratch_id)
        self.unlink(buffer_id)
