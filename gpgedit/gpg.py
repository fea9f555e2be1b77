import contextlib
import logging
import os
import pathlib
import re
import shlex
import subprocess
import sys
import typing

import attr

from .config import Config
from .utils import GPGEditException

log = logging.getLogger(__name__)

# Diagnostics are parsed as text, so they must not be translated.
LOCALE = {'LC_ALL': 'C', 'LANG': 'C', 'LANGUAGE': 'C'}

Settings = typing.MutableMapping[str, typing.Any]
Stream = typing.Union[bytes, typing.BinaryIO, None]


@contextlib.contextmanager
def scoped(
        settings: Settings,
        overrides: typing.Mapping[str, typing.Any]) -> typing.Iterator[None]:
    """
    Apply overrides to a settings mapping for the duration of a block.

    Every original value is put back afterwards, and keys that did not exist
    before are removed again, even if the block raises.
    """
    missing = object()
    saved = {key: settings.get(key, missing) for key in overrides}
    settings.update(overrides)
    try:
        yield
    finally:
        for key, value in saved.items():
            if value is missing:
                settings.pop(key, None)
            else:
                settings[key] = value


def option_arguments(options: typing.Iterable[str]) -> typing.List[str]:
    """
    Convert option tokens into command line arguments.

    A token is an option name without leading dashes, optionally followed by
    its value: 'cipher-algo AES256' becomes ['--cipher-algo', 'AES256'].
    """
    arguments: typing.List[str] = []
    for option in options:
        name, *values = option.split()
        arguments += [f'--{name}', *values]
    return arguments


def tty_name() -> typing.Optional[str]:
    stdin = sys.stdin
    if stdin is None or not hasattr(stdin, 'isatty'):
        return None
    with contextlib.suppress(OSError, ValueError):
        if stdin.isatty():
            return os.ttyname(stdin.fileno())
    return None


def decode(data: typing.Optional[bytes]) -> str:
    return data.decode('utf-8', errors='replace') if data else ''


@attr.s(frozen=True)
class Result:
    status: int = attr.ib()
    stdout: typing.Union[str, bytes] = attr.ib(default='')
    stderr: str = attr.ib(default='')

    @property
    def ok(self) -> bool:
        return self.status == 0


@attr.s(frozen=True)
class EngineInfo:
    """What the engine reports about itself in 'gpg --version'."""

    version: str = attr.ib(default='')
    home: typing.Optional[pathlib.Path] = attr.ib(default=None)
    pubkey: typing.Tuple[str, ...] = attr.ib(default=())
    cipher: typing.Tuple[str, ...] = attr.ib(default=())
    hash: typing.Tuple[str, ...] = attr.ib(default=())
    compression: typing.Tuple[str, ...] = attr.ib(default=())

    FIELDS = ('Home', 'Pubkey', 'Cipher', 'Hash', 'Compression')

    @property
    def agent_required(self) -> bool:
        """gpg 2.1 and later always use gpg-agent and ignore --no-use-agent."""
        numbers = re.findall(r'\d+', self.version)[:2]
        return tuple(int(number) for number in numbers) >= (2, 1)

    @classmethod
    def parse(cls, text: str) -> 'EngineInfo':
        lines = text.splitlines()
        version = lines[0].split()[-1] if lines and lines[0].strip() else ''

        values: typing.Dict[str, str] = {}
        current = None
        for line in lines[1:]:
            match = re.match(r'^(\w+):\s*(.*)$', line)
            if match:
                current = match.group(1)
                values[current] = match.group(2).strip()
            elif current in cls.FIELDS and line[:1].isspace():
                # Long algorithm lists wrap onto indented lines.
                values[current] = f"{values[current]} {line.strip()}"
            else:
                current = None

        def algorithms(key: str) -> typing.Tuple[str, ...]:
            return tuple(
                item.strip() for item in values.get(key, '').split(',')
                if item.strip())

        home = values.get('Home')
        return cls(
            version=version,
            home=pathlib.Path(home).expanduser() if home else None,
            pubkey=algorithms('Pubkey'),
            cipher=algorithms('Cipher'),
            hash=algorithms('Hash'),
            compression=algorithms('Compression'))


@attr.s(frozen=True)
class GPG:
    """
    Runs the gpg executable.

    Metadata queries capture the engine's output as text. Content is only ever
    streamed through pipes, so plaintext is never spooled into a file.
    """

    config: Config = attr.ib(factory=Config)
    settings: Settings = attr.ib(factory=dict, eq=False, repr=False)

    @property
    def overrides(self) -> typing.Dict[str, typing.Any]:
        """Host settings in force while the engine runs."""
        return {'shellredir': '>', 'shelltemp': False, 'shellquote': ''}

    def command(self, arguments: typing.Sequence[str]) -> typing.Tuple[str, ...]:
        command: typing.Tuple[str, ...] = tuple(shlex.split(self.config.executable))
        if not self.config.use_agent:
            command = (*command, '--no-use-agent')
        if not self.config.tty:
            command = (*command, '--no-tty')
        return (*command, *arguments)

    def environment(self) -> typing.Dict[str, str]:
        env = dict(os.environ, **LOCALE)
        if self.config.home:
            env['GNUPGHOME'] = self.config.home.as_posix()
        if 'GPG_TTY' not in env:
            tty = tty_name()
            if tty:
                env['GPG_TTY'] = tty
        return env

    def _run(self, arguments: typing.Sequence[str], **kwargs) -> subprocess.CompletedProcess:
        command = self.command(arguments)
        log.debug(f"Running {' '.join(command)}")
        try:
            with scoped(self.settings, self.overrides):
                return subprocess.run(
                    command,
                    stderr=subprocess.PIPE,
                    env=self.environment(),
                    **kwargs)
        except OSError as error:
            raise GPGEditException(
                f"Could not run {command[0]}: {error.strerror}") from error

    def _result(self, process: subprocess.CompletedProcess, stdout) -> Result:
        stderr = decode(process.stderr)
        level = logging.DEBUG if process.returncode == 0 else logging.ERROR
        for line in stderr.splitlines():
            log.log(level, line)
        if process.returncode != 0:
            log.debug(f"gpg exited with status {process.returncode}")
        return Result(status=process.returncode, stdout=stdout, stderr=stderr)

    def capture(self, arguments: typing.Sequence[str]) -> Result:
        """Run a query and return its output as text. Not for plaintext."""
        process = self._run(
            arguments,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE)
        return self._result(process, decode(process.stdout))

    def stream(
            self,
            arguments: typing.Sequence[str],
            stdin: Stream = None,
            stdout: typing.Optional[typing.BinaryIO] = None) -> Result:
        """
        Pipe content through the engine.

        stdin can be bytes or an open binary file. If stdout is an open binary
        file the output is written straight into it, otherwise the output is
        returned as bytes.
        """
        kwargs: typing.Dict[str, typing.Any] = {
            'stdout': stdout if stdout is not None else subprocess.PIPE,
        }
        if isinstance(stdin, bytes):
            kwargs['input'] = stdin
        else:
            kwargs['stdin'] = stdin if stdin is not None else subprocess.DEVNULL
        process = self._run(arguments, **kwargs)
        return self._result(process, process.stdout if stdout is None else b'')

    def version(self) -> EngineInfo:
        result = self.capture(['--version'])
        if not result.ok:
            log.warning("Could not query the gpg version")
            return EngineInfo()
        return EngineInfo.parse(result.stdout)

    def list_keys(self, query: str) -> Result:
        return self.capture([
            '--quiet', '--with-colons', '--fixed-list-mode',
            '--list-keys', query])

    def dry_run(self, path: pathlib.Path) -> Result:
        """Describe how a file is encrypted without decrypting it."""
        log.debug(f"Inspecting {path}")
        return self.capture([
            '--verbose', '--decrypt', '--list-only', '--dry-run',
            '--logger-fd', '1', str(path)])

    def decrypt(self, path: pathlib.Path) -> Result:
        """Decrypt a file, returning the plaintext as bytes in the result."""
        log.debug(f"Decrypting {path}")
        if not self.config.pipes:
            return self.stream(['--quiet', '--decrypt', str(path)])
        with path.open('rb') as encrypted:
            return self.stream(['--quiet', '--decrypt'], stdin=encrypted)

    def encrypt(
            self,
            plaintext: bytes,
            output: typing.BinaryIO,
            options: typing.Iterable[str],
            recipients: typing.Iterable[str]) -> Result:
        """Encrypt plaintext into an open file."""
        args: typing.List[str] = ['--quiet', '--no-encrypt-to']
        args += option_arguments(options)
        for recipient in recipients:
            args += ['--recipient', recipient]
        return self.stream(args, stdin=plaintext, stdout=output)
