"""
Recipients, and the keyring queries used to find them.

Names typed by the user are resolved to key identities (long key ids) using
'gpg --list-keys --with-colons'. Only keys that can currently be used for
encryption are ever offered.
"""

import datetime
import logging
import re
import typing

import attr

from .gpg import GPG

log = logging.getLogger(__name__)

# Separates a user id from the identity suffix in the recipients buffer.
SEPARATOR = '\t '
IDENTITY_PATTERN = re.compile(
    re.escape(SEPARATOR) + r'\(ID: 0x([0-9A-Fa-f]+) created at [^()]*\)\s*$')

Chooser = typing.Callable[[str, typing.Sequence[str]], str]


def normalise(identity: str) -> str:
    identity = identity.strip()
    if identity[:2].lower() == '0x':
        identity = identity[2:]
    return identity.upper()


def unescape(field: str) -> str:
    """Decode the C-style escapes gpg uses inside colon listings."""
    return re.sub(
        r'\\x([0-9A-Fa-f]{2})',
        lambda match: chr(int(match.group(1), 16)),
        field)


def timestamp(value: typing.Optional[int]) -> str:
    if value is None:
        return 'unknown'
    created = datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
    return created.strftime('%Y-%m-%d %H:%M:%S')


@attr.s(frozen=True)
class Known:
    identity: str = attr.ib(converter=normalise)

    def __str__(self):
        return self.identity


@attr.s(frozen=True)
class Unknown:
    text: str = attr.ib()

    def __str__(self):
        return f"!{self.text}"


RecipientRef = typing.Union[Known, Unknown]


class RecipientList:
    """An ordered set of recipients."""

    def __init__(self, refs: typing.Iterable[RecipientRef] = ()):
        self._refs: typing.List[RecipientRef] = []
        for ref in refs:
            self.add(ref)

    def add(self, ref: RecipientRef) -> bool:
        if ref in self._refs:
            return False
        self._refs.append(ref)
        return True

    @property
    def known(self) -> typing.List[Known]:
        return [ref for ref in self._refs if isinstance(ref, Known)]

    @property
    def unknown(self) -> typing.List[Unknown]:
        return [ref for ref in self._refs if isinstance(ref, Unknown)]

    def __iter__(self):
        return iter(self._refs)

    def __len__(self):
        return len(self._refs)

    def __bool__(self):
        return bool(self._refs)

    def __contains__(self, ref):
        return ref in self._refs

    def __eq__(self, other):
        if isinstance(other, RecipientList):
            return self._refs == other._refs
        return NotImplemented

    def __repr__(self):
        return f"RecipientList({self._refs!r})"


@attr.s(frozen=True, kw_only=True)
class KeyRecord:
    identity: str = attr.ib(converter=normalise)
    capabilities: str = attr.ib(default='')
    created: typing.Optional[int] = attr.ib(default=None)
    uids: typing.Tuple[str, ...] = attr.ib(default=(), converter=tuple)

    @property
    def can_encrypt(self) -> bool:
        """Upper case flags describe the key as a whole, 'D' means disabled."""
        return 'E' in self.capabilities and 'D' not in self.capabilities

    def choice(self, number: int) -> str:
        lines = [f"{number}: ID: 0x{self.identity} created at {timestamp(self.created)}"]
        lines += [f"     {uid}" for uid in self.uids]
        return '\n'.join(lines)


def parse_keys(text: str) -> typing.List[KeyRecord]:
    """Parse the public keys out of a '--with-colons --fixed-list-mode' listing."""
    records: typing.List[KeyRecord] = []
    current: typing.Optional[typing.Dict[str, typing.Any]] = None
    seen: typing.Set[str] = set()

    def finish():
        if current is not None and current['identity'] not in seen:
            seen.add(current['identity'])
            records.append(KeyRecord(**current))

    for line in text.splitlines():
        fields = line.split(':')
        if fields[0] == 'pub' and len(fields) > 11:
            finish()
            current = {
                'identity': fields[4],
                'capabilities': fields[11],
                'created': int(fields[5]) if fields[5].isdigit() else None,
                'uids': [],
            }
        elif fields[0] == 'uid' and current is not None and len(fields) > 9:
            current['uids'].append(unescape(fields[9]))
        elif fields[0] == 'sub':
            # Subkeys belong to the key above, user ids never follow them.
            finish()
            current = None
    finish()
    return records


@attr.s(frozen=True)
class Directory:
    """Look up keys in the public keyring."""

    gpg: GPG = attr.ib()
    chooser: Chooser = attr.ib(eq=False)

    def keys(self, query: str) -> typing.List[KeyRecord]:
        result = self.gpg.list_keys(query)
        if not result.ok:
            log.debug(f"No keys found for {query!r}")
        return parse_keys(result.stdout)

    def candidates(self, query: str) -> typing.List[KeyRecord]:
        return [key for key in self.keys(query) if key.can_encrypt]

    def resolve(self, name: str) -> typing.Optional[str]:
        """Find the identity of the single key a name refers to."""
        candidates = self.candidates(name)
        log.debug(f"Found {len(candidates)} keys for {name!r}")

        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0].identity

        title = f'The name "{name}" is ambiguous. Please select the correct key:'
        choices = [key.choice(number) for number, key in enumerate(candidates)]
        while True:
            answer = self.chooser(title, choices).strip()
            if answer.isdigit() and int(answer) < len(candidates):
                return candidates[int(answer)].identity

    def resolve_ref(self, text: str) -> 'RecipientRef':
        identity = self.resolve(text)
        return Known(identity) if identity else Unknown(text)

    def display(self, identity: str) -> str:
        """Format an identity for the recipients buffer, or '' if it is unknown."""
        for key in self.candidates(identity):
            if key.uids:
                return format_display(key.uids[0], key.identity, key.created)
        return ''


def format_display(uid: str, identity: str, created: typing.Optional[int]) -> str:
    return f"{uid}{SEPARATOR}(ID: 0x{normalise(identity)} created at {timestamp(created)})"


def extract(line: str) -> typing.Optional[str]:
    """Find the identity in a line written by format_display."""
    match = IDENTITY_PATTERN.search(line)
    return normalise(match.group(1)) if match else None
