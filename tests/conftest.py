import pathlib
import stat
import typing

import attr
import pytest

from gpgedit.config import Config
from gpgedit.gpg import GPG, Result
from gpgedit.host import Buffer, Host, Level
from gpgedit.lifecycle import Orchestrator
from gpgedit.recipients import Directory

VERSION = """\
gpg (GnuPG) 2.2.40
libgcrypt 1.10.1
Copyright (C) 2022 Free Software Foundation, Inc.

Home: /home/user/.gnupg
Supported algorithms:
Pubkey: RSA, ELG, DSA, ECDH, ECDSA, EDDSA
Cipher: IDEA, 3DES, CAST5, BLOWFISH, AES, AES192, AES256, TWOFISH,
        CAMELLIA128, CAMELLIA192, CAMELLIA256
Hash: SHA1, RIPEMD160, SHA256, SHA384, SHA512, SHA224
Compression: Uncompressed, ZIP, ZLIB, BZIP2
"""

ALICE = '1111222233334444'
BOB = 'AAAABBBBCCCCDDDD'
BOB_WORK = 'EEEEFFFF00001111'
SIGNING_ONLY = '5555666677778888'
CREATED = 1600000000

# Stands in for gpg on the command line: the "ciphertext" is the plaintext
# with a header line, so decrypting removes the first line.
FAKE_ENGINE = r"""#!/bin/sh
for last; do :; done
[ -z "$FAKE_GPG_LOG" ] || echo "$*" >> "$FAKE_GPG_LOG"
case " $* " in
  *" --version "*)
    printf '%s\n' 'gpg (GnuPG) 2.2.40' 'Home: /nonexistent' \
      'Supported algorithms:' 'Cipher: AES, AES256' 'Hash: SHA256'
    ;;
  *" --dry-run "*)
    printf '%s\n' 'gpg: AES256.CFB encrypted data' 'gpg: encrypted with 1 passphrase'
    exit 2
    ;;
  *" --list-keys "*)
    if [ -f "$FAKE_GPG_KEYRING/$last" ]; then cat "$FAKE_GPG_KEYRING/$last"; else exit 2; fi
    ;;
  *" --decrypt "*)
    if [ -f "$last" ]; then sed '1d' "$last"; else sed '1d'; fi
    ;;
  *" --no-encrypt-to "*)
    if [ -n "$FAKE_GPG_FAIL" ]; then printf 'partial'; echo 'gpg: failed' >&2; exit 2; fi
    echo 'FAKE ENCRYPTED'
    cat
    ;;
  *)
    exit 2
    ;;
esac
"""


def key(identity: str, *uids: str, capabilities: str = 'escaESCA',
        created: int = CREATED) -> str:
    """A public key as listed by 'gpg --with-colons --fixed-list-mode'."""
    lines = [
        f'pub:u:255:22:{identity}:{created}:::u:::{capabilities}::::::ed25519:::0:',
        f'fpr:::::::::{"F" * 24}{identity}:',
    ]
    lines += [f'uid:u::::{created}::HASH::{uid}::::::::::0:' for uid in uids]
    lines += [
        f'sub:u:255:18:{identity[::-1]}:{created}::::::e::::::cv25519::',
        f'fpr:::::::::{"E" * 24}{identity[::-1]}:',
    ]
    return '\n'.join(lines) + '\n'


KEYRING = {
    ALICE: key(ALICE, 'Alice <alice@example.invalid>'),
    'alice': key(ALICE, 'Alice <alice@example.invalid>'),
    BOB: key(BOB, 'Bob <bob@example.invalid>', 'Robert <robert@example.invalid>'),
    BOB_WORK: key(BOB_WORK, 'Bob (work) <bob@work.invalid>'),
    'bob': (key(BOB, 'Bob <bob@example.invalid>', 'Robert <robert@example.invalid>')
            + key(BOB_WORK, 'Bob (work) <bob@work.invalid>')),
    SIGNING_ONLY: key(SIGNING_ONLY, 'Sig <sig@example.invalid>', capabilities='scSC'),
    'sig': key(SIGNING_ONLY, 'Sig <sig@example.invalid>', capabilities='scSC'),
}


@attr.s(frozen=True)
class FakeGPG(GPG):
    """Answers queries from a dictionary instead of running gpg."""

    keyring: typing.Dict[str, str] = attr.ib(factory=lambda: dict(KEYRING), eq=False)
    diagnostics: typing.List[str] = attr.ib(factory=list, eq=False)
    plaintext: typing.List[bytes] = attr.ib(factory=lambda: [b'one\ntwo\nthree\n'], eq=False)
    status: typing.Dict[str, int] = attr.ib(factory=dict, eq=False)
    calls: typing.List[typing.Tuple[str, ...]] = attr.ib(factory=list, eq=False)

    def capture(self, arguments: typing.Sequence[str]) -> Result:
        self.calls.append(tuple(arguments))
        if '--version' in arguments:
            return Result(0, VERSION)
        if '--list-keys' in arguments:
            listing = self.keyring.get(arguments[-1], '')
            return Result(0 if listing else 2, listing)
        if '--dry-run' in arguments:
            return Result(2, '\n'.join(self.diagnostics) + '\n')
        return Result(2)

    def stream(self, arguments, stdin=None, stdout=None) -> Result:
        self.calls.append(tuple(arguments))
        if '--decrypt' in arguments:
            status = self.status.get('decrypt', 0)
            return Result(status, self.plaintext[0] if status == 0 else b'')
        status = self.status.get('encrypt', 0)
        if status == 0:
            stdout.write(b'ENCRYPTED\n' + stdin)
        else:
            stdout.write(b'partial')
        return Result(status)

    def ran(self, flag: str) -> bool:
        return any(flag in call for call in self.calls)

    @property
    def decrypted(self) -> bool:
        """Whether any content was decrypted, as opposed to inspected."""
        return any('--decrypt' in call and '--dry-run' not in call for call in self.calls)


class ScriptedHost(Host):
    """Records what the user is shown and answers prompts from a script."""

    def __init__(self):
        super().__init__({'shell': '/bin/bash'})
        self.notices: typing.List[typing.Tuple[Level, str]] = []
        self.acknowledged: typing.List[str] = []
        self.confirmations: typing.List[str] = []
        self.menus: typing.List[typing.Tuple[str, typing.List[str]]] = []
        self.shown: typing.List[Buffer] = []
        self.answers: typing.List[str] = []
        self.confirm_answer = True
        self.edit: typing.Optional[typing.Callable[[typing.List[str]], typing.List[str]]] = None

    def notify(self, message: str, level: Level = Level.INFO) -> None:
        self.notices.append((level, message))

    def messages(self, level: Level) -> typing.List[str]:
        return [message for notice_level, message in self.notices if notice_level is level]

    def acknowledge(self, message: str) -> None:
        self.acknowledged.append(message)

    def confirm(self, message: str) -> bool:
        self.confirmations.append(message)
        return self.confirm_answer

    def choose(self, title: str, choices: typing.Sequence[str]) -> str:
        self.menus.append((title, list(choices)))
        return self.answers.pop(0)

    def show(self, buffer: Buffer, on_hide: typing.Callable[[], None]) -> None:
        self.shown.append(buffer)
        if self.edit is not None:
            buffer.lines = self.edit(list(buffer.lines))
            on_hide()


@pytest.fixture()
def host() -> ScriptedHost:
    return ScriptedHost()


@pytest.fixture()
def gpg() -> FakeGPG:
    return FakeGPG()


@pytest.fixture()
def config() -> Config:
    return Config()


@pytest.fixture()
def directory(gpg, host) -> Directory:
    return Directory(gpg, chooser=host.choose)


@pytest.fixture()
def orchestrator(host, config, gpg) -> Orchestrator:
    return Orchestrator(host, config, gpg=gpg)


@pytest.fixture()
def engine(tmp_path) -> pathlib.Path:
    """A script that behaves enough like gpg to be run as a subprocess."""
    path = tmp_path / 'fake-gpg'
    path.write_text(FAKE_ENGINE)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


@pytest.fixture()
def encrypted_file(tmp_path) -> pathlib.Path:
    path = tmp_path / 'secret.txt.gpg'
    path.write_bytes(b'\x85\x01\x0c\x03binary ciphertext')
    return path
