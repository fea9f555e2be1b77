"""
Scratch buffers for editing the recipients and options of an encrypted file.

The list is rendered into a scratch buffer and parsed back when the buffer is
hidden, closed or written. Lines starting with 'GPG:' are instructions and are
thrown away.
"""

import logging
import re
import typing
import weakref

from .config import Config
from .host import Buffer, Host, Level
from .recipients import Directory, Known, RecipientList, Unknown, extract
from .session import Session, SessionTable
from .utils import NotEncrypted, unique

log = logging.getLogger(__name__)

COMMENT = 'GPG:'
RULE = f'{COMMENT} ' + '-' * 70

RECIPIENTS_BANNER = (
    RULE,
    'GPG: Please edit the list of recipients, one recipient per line.',
    'GPG: Unknown recipients have a prepended "!".',
    'GPG: Lines beginning with "GPG:" are removed automatically.',
    'GPG: Data after recipients between and including "(" and ")" is ignored.',
    'GPG: Closing this buffer commits changes.',
    RULE,
)

OPTIONS_BANNER = (
    RULE,
    'GPG: THERE IS NO CHECK OF THE ENTERED OPTIONS!',
    'GPG: YOU NEED TO KNOW WHAT YOU ARE DOING!',
    'GPG: IF IN DOUBT, CLOSE THIS BUFFER WITHOUT CHANGES.',
    'GPG: Please edit the list of options, one option per line.',
    'GPG: Please refer to the gpg documentation for valid options.',
    'GPG: Lines beginning with "GPG:" are removed automatically.',
    'GPG: Closing this buffer commits changes.',
    RULE,
)

STRIP = re.compile(r'^[\s!]*(.*?)\s*$')


def strip(line: str) -> str:
    """Remove whitespace and the unknown-recipient marker from a line."""
    text = STRIP.match(line).group(1)  # type: ignore
    return '' if text.startswith(COMMENT) else text


def strip_option(line: str) -> str:
    """Remove surrounding whitespace from an option line."""
    text = line.strip()
    return '' if text.startswith(COMMENT) else text


class ScratchEditor:
    prefix = '[GPG]'

    def __init__(self, host: Host, sessions: SessionTable, config: Config):
        self.host = host
        self.sessions = sessions
        self.config = config
        self._scratch: typing.Dict[int, Buffer] = {}
        self._targets: typing.Dict[int, 'weakref.ReferenceType[Buffer]'] = {}

    def render(self, session: Session) -> typing.List[str]:
        raise NotImplementedError

    def apply(self, session: Session, lines: typing.Sequence[str]) -> None:
        raise NotImplementedError

    def session(self, buffer: Buffer) -> Session:
        session = self.sessions.get(buffer.id)
        if session is None:
            raise NotEncrypted(f"{buffer.name} is not handled by gpgedit")
        return session

    def find(self, buffer: Buffer) -> typing.Optional[Buffer]:
        for scratch_id in self.sessions.scratch_for(buffer.id):
            if scratch_id in self._scratch:
                return self._scratch[scratch_id]
        return None

    def open(self, buffer: Buffer) -> Buffer:
        """Show the scratch buffer for a file, creating it if needed."""
        existing = self.find(buffer)
        if existing is not None:
            log.debug(f"Focusing {existing.name}")
            self.host.show(existing, lambda: self.close(existing.id))
            return existing

        scratch = Buffer(
            name=f"{self.prefix} {buffer.name}",
            lines=self.render(self.session(buffer)))
        self.host.harden(scratch)
        self._scratch[scratch.id] = scratch
        self._targets[scratch.id] = weakref.ref(buffer)
        self.sessions.link(scratch.id, buffer.id)
        log.debug(f"Opened {scratch.name}")
        self.host.show(scratch, lambda: self.close(scratch.id))
        return scratch

    def commit(self, scratch_id: int) -> bool:
        """Parse a scratch buffer back into the session it was opened for."""
        scratch = self._scratch.get(scratch_id)
        session = self.sessions.lookup_source(scratch_id)
        target = self._targets.get(scratch_id)
        buffer = target() if target is not None else None
        if scratch is None or session is None or buffer is None:
            self.host.warn("The file this list belongs to is no longer open")
            return False

        self.apply(session, scratch.lines)
        buffer.modified = True
        scratch.modified = False
        return True

    def close(self, scratch_id: int) -> None:
        if scratch_id not in self._scratch:
            return
        try:
            self.commit(scratch_id)
        finally:
            self.forget(scratch_id)

    def forget(self, scratch_id: int) -> None:
        """Drop a scratch buffer without committing it."""
        self._scratch.pop(scratch_id, None)
        self._targets.pop(scratch_id, None)
        self.sessions.unlink(scratch_id)


class RecipientsEditor(ScratchEditor):
    prefix = '[GPG Recipients]'

    def __init__(self, host: Host, sessions: SessionTable, config: Config,
                 directory: Directory):
        super().__init__(host, sessions, config)
        self.directory = directory

    def describe(self, ref: Known) -> str:
        # Keys removed from the keyring are shown by identity and resolved again.
        return self.directory.display(ref.identity) or ref.identity

    def render(self, session: Session) -> typing.List[str]:
        lines = list(RECIPIENTS_BANNER)
        if self.config.possible_recipients:
            lines.append(f"{COMMENT} Use one of the following recipients:")
            lines += [f"{COMMENT} {name}" for name in self.config.possible_recipients]
            lines.append(RULE)
        lines += [self.describe(ref) for ref in session.recipients.known]
        lines += [str(ref) for ref in session.recipients.unknown]
        return lines

    def parse(self, lines: typing.Iterable[str]) -> RecipientList:
        recipients = RecipientList()
        for line in lines:
            identity = extract(line)
            if identity:
                recipients.add(Known(identity))
                continue

            text = strip(line)
            if not text:
                continue

            ref = self.directory.resolve_ref(text)
            if recipients.add(ref) and isinstance(ref, Unknown):
                self.host.warn(f'The recipient "{text}" is not in your public keyring!')
        return recipients

    def apply(self, session: Session, lines: typing.Sequence[str]) -> None:
        recipients = self.parse(lines)
        if not recipients:
            self.host.notify("There are no known recipients!", Level.ERROR)
        session.set_recipients(recipients, mark_encrypted=True)

    def view(self, buffer: Buffer) -> typing.List[str]:
        session = self.session(buffer)
        lines = ["The following recipients are set:"]
        lines += [self.describe(ref) for ref in session.recipients.known]
        if session.recipients.unknown:
            lines.append("The following recipients are unknown:")
            lines += [ref.text for ref in session.recipients.unknown]
        self.host.notify('\n'.join(lines))
        return lines


class OptionsEditor(ScratchEditor):
    prefix = '[GPG Options]'

    def render(self, session: Session) -> typing.List[str]:
        return [*OPTIONS_BANNER, *session.options]

    def parse(self, lines: typing.Iterable[str]) -> typing.List[str]:
        return unique(text for text in map(strip_option, lines) if text)

    def apply(self, session: Session, lines: typing.Sequence[str]) -> None:
        session.set_options(self.parse(lines))

    def view(self, buffer: Buffer) -> typing.List[str]:
        session = self.session(buffer)
        lines = ["The following options are set:", *session.options]
        self.host.notify('\n'.join(lines))
        return lines
