"""
Find out how a file is encrypted from gpg's dry-run diagnostics.

A dry run never produces plaintext: gpg only lists the packets it would
decrypt. The diagnostic lines that matter look like this:

    gpg: AES256.CFB encrypted data
    gpg: encrypted with 1 passphrase
    gpg: public key is 0x1234567890ABCDEF
    gpg: armor header: Version: GnuPG v2

Armored files are detected from their first line, which covers files gpg
reports no armor header for, and from the diagnostics as a fallback.
"""

import enum
import logging
import pathlib
import re
import typing

import attr

from .gpg import GPG
from .recipients import Directory, Known, RecipientList, Unknown

log = logging.getLogger(__name__)

SYMMETRIC = re.compile(r'gpg: encrypted with \d+ passphrase')
CIPHER = re.compile(r'gpg: ([^\s.]+)(?:\.\S+)? encrypted data')
PUBLIC_KEY = re.compile(r'gpg: public key is (?:0x)?([0-9A-Fa-f]{8,16})\b')
ARMOR_LINES = (b'-----BEGIN PGP MESSAGE-----', b'-----BEGIN PGP SIGNED MESSAGE-----')

Warn = typing.Callable[[str], None]


class Scheme(enum.Enum):
    NONE = 'none'
    SYMMETRIC = 'symmetric'
    ASYMMETRIC = 'asymmetric'


@attr.s(frozen=True, kw_only=True)
class Classification:
    scheme: Scheme = attr.ib()
    cipher: typing.Optional[str] = attr.ib(default=None)
    recipients: RecipientList = attr.ib(factory=RecipientList, eq=False)
    armored: bool = attr.ib(default=False)

    @property
    def encrypted(self) -> bool:
        return self.scheme is not Scheme.NONE

    def options(self) -> typing.List[str]:
        """The option tokens needed to encrypt a file the same way again."""
        options: typing.List[str] = []
        if self.scheme is Scheme.SYMMETRIC:
            options.append('symmetric')
        elif self.scheme is Scheme.ASYMMETRIC:
            options.append('encrypt')
        if self.cipher:
            options.append(f'cipher-algo {self.cipher}')
        if self.armored:
            options.append('armor')
        return options


def hidden(identity: str) -> bool:
    """Anonymous recipients are reported with an all-zero key id."""
    return set(identity) == {'0'}


def first_line_armored(path: pathlib.Path) -> bool:
    with path.open('rb') as file:
        first = file.readline().strip()
    return first in ARMOR_LINES


@attr.s(frozen=True)
class Classifier:
    gpg: GPG = attr.ib()
    directory: Directory = attr.ib()
    ciphers: typing.Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    warn: Warn = attr.ib(default=log.warning, eq=False)

    def classify(self, path: pathlib.Path) -> Classification:
        output = self.gpg.dry_run(path).stdout
        armored = first_line_armored(path) or 'gpg: armor header' in output

        if SYMMETRIC.search(output):
            log.debug(f"{path} is encrypted with a passphrase")
            return Classification(
                scheme=Scheme.SYMMETRIC,
                cipher=self.cipher(output),
                armored=armored)

        identities = PUBLIC_KEY.findall(output)
        if identities:
            log.debug(f"{path} is encrypted for {len(identities)} keys")
            return Classification(
                scheme=Scheme.ASYMMETRIC,
                recipients=self.recipients(identities),
                armored=armored)

        log.debug(f"{path} is not encrypted")
        return Classification(scheme=Scheme.NONE, armored=armored)

    def cipher(self, output: str) -> typing.Optional[str]:
        match = CIPHER.search(output)
        if not match:
            return None
        cipher = match.group(1)
        if cipher.upper() not in (c.upper() for c in self.ciphers):
            self.warn(f"The cipher {cipher} is not known by the local gpg command. Using default!")
            return None
        return cipher

    def recipients(self, identities: typing.Iterable[str]) -> RecipientList:
        recipients = RecipientList()
        for identity in identities:
            if hidden(identity):
                log.debug("Skipping a hidden recipient")
                continue
            resolved = self.directory.resolve(identity)
            if resolved:
                recipients.add(Known(resolved))
            elif recipients.add(Unknown(identity)):
                self.warn(f'The recipient "{identity}" is not in your public keyring!')
        return recipients
