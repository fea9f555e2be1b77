import contextlib
import functools
import logging
import os.path
import pathlib
import tempfile
import typing

import attr
import click

from . import __doc__, __version__
from .config import DEFAULT_EXECUTABLE, DEFAULT_PATTERNS, Config
from .host import Buffer, Host, Level
from .lifecycle import Orchestrator
from .recipients import Known
from .utils import GPGEditException

log = logging.getLogger(__name__)

# Memory backed, so click.edit() doesn't spool plaintext onto a disk.
VOLATILE_TEMPDIR = pathlib.Path('/dev/shm')

LEVEL_COLOURS = {
    Level.INFO: None,
    Level.WARNING: 'yellow',
    Level.ERROR: 'red',
}


@functools.lru_cache()
def rel(path: pathlib.Path) -> str:
    """
    Convert a path to a relative Path.

    Returns a string as these should only be used for presentation.
    """
    return os.path.relpath(path.as_posix(), pathlib.Path.cwd().as_posix())


@contextlib.contextmanager
def volatile_tempdir(insecure: bool = False) -> typing.Iterator[None]:
    saved = tempfile.tempdir
    if VOLATILE_TEMPDIR.is_dir():
        tempfile.tempdir = VOLATILE_TEMPDIR.as_posix()
    elif insecure:
        log.warning(
            f"{VOLATILE_TEMPDIR} does not exist, $EDITOR will write to {tempfile.gettempdir()}")
    else:
        raise GPGEditException(
            f"{VOLATILE_TEMPDIR} does not exist, so $EDITOR would write decrypted text "
            "to a disk. Use --insecure-tempdir to allow this.")
    try:
        yield
    finally:
        tempfile.tempdir = saved


def edit_text(
        text: str,
        extension: str = '.txt',
        insecure: bool = False) -> typing.Optional[str]:
    """Edit text in $EDITOR, returning None if it was not saved."""
    with volatile_tempdir(insecure):
        return click.edit(text=text, extension=extension)


class ClickHost(Host):
    """Uses the terminal for prompts and $EDITOR for scratch buffers."""

    def __init__(self, insecure_tempdir: bool = False, settings=None):
        super().__init__(settings)
        self.insecure_tempdir = insecure_tempdir

    def notify(self, message: str, level: Level = Level.INFO) -> None:
        click.secho(message, fg=LEVEL_COLOURS[level], err=True)

    def acknowledge(self, message: str) -> None:
        click.secho(message, fg='red', err=True)
        click.pause(info='', err=True)

    def confirm(self, message: str) -> bool:
        return click.confirm(message, default=False, err=True)

    def choose(self, title: str, choices: typing.Sequence[str]) -> str:
        click.echo(title, err=True)
        for choice in choices:
            click.echo(choice, err=True)
        return click.prompt("Enter number", type=click.STRING, err=True)

    def show(self, buffer: Buffer, on_hide: typing.Callable[[], None]) -> None:
        text = edit_text(buffer.text, insecure=self.insecure_tempdir)
        if text is None:
            log.debug(f"{buffer.name} was closed without saving")
            return
        buffer.text = text
        on_hide()


@attr.s
class App:
    config: Config = attr.ib()
    host: Host = attr.ib(default=attr.Factory(
        lambda self: ClickHost(self.config.insecure_tempdir), takes_self=True))

    _orchestrator: typing.Optional[Orchestrator] = attr.ib(default=None, init=False)

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            self._orchestrator = Orchestrator(self.host, self.config)
        return self._orchestrator

    def open(self, path: pathlib.Path) -> Buffer:
        if not self.orchestrator.matches(path):
            raise GPGEditException(
                f"{rel(path)} does not match any of: {', '.join(self.config.patterns)}")
        buffer = Buffer.for_path(path)
        self.orchestrator.on_read(buffer)
        return buffer


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


path_argument = click.argument(
    'path',
    type=PathType(dir_okay=False),
    required=True)

existing_path_argument = click.argument(
    'path',
    type=PathType(exists=True, dir_okay=False),
    required=True)


@click.group(help=__doc__)
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.option(
    '--executable',
    envvar='GPGEDIT_EXECUTABLE',
    default=DEFAULT_EXECUTABLE,
    show_default=True,
    help="The gpg command, including any extra arguments.")
@click.option(
    '--agent/--no-agent', 'use_agent',
    envvar='GPGEDIT_USE_AGENT',
    default=True,
    help="Let gpg use gpg-agent for passphrases (gpg 2.1 and later always do).")
@click.option(
    '--tty/--no-tty',
    default=True,
    help="Let gpg use the terminal.")
@click.option(
    '--symmetric/--public-key', 'prefer_symmetric',
    envvar='GPGEDIT_PREFER_SYMMETRIC',
    default=False,
    help="How new files are encrypted.")
@click.option(
    '--armor/--no-armor', 'prefer_armor',
    envvar='GPGEDIT_PREFER_ARMOR',
    default=False,
    help="ASCII armor new files (always done for '.asc' files).")
@click.option(
    '--sign/--no-sign', 'prefer_sign',
    envvar='GPGEDIT_PREFER_SIGN',
    default=False,
    help="Sign new files.")
@click.option(
    '-r', '--recipient', 'default_recipients',
    metavar='NAME',
    envvar='GPGEDIT_RECIPIENTS',
    multiple=True,
    help="Recipients for new files.")
@click.option(
    '--possible-recipient', 'possible_recipients',
    metavar='NAME',
    envvar='GPGEDIT_POSSIBLE_RECIPIENTS',
    multiple=True,
    help="Recipients suggested when editing the list of recipients.")
@click.option(
    '--home',
    envvar='GPGEDIT_HOME',
    type=PathType(file_okay=False),
    default=None,
    help="Use an alternate gpg home directory.")
@click.option(
    '--pipes/--no-pipes',
    envvar='GPGEDIT_PIPES',
    default=True,
    help="Feed encrypted files to gpg through a pipe instead of by name.")
@click.option(
    '-p', '--pattern', 'patterns',
    multiple=True,
    default=DEFAULT_PATTERNS,
    show_default=True,
    help="Glob patterns for encrypted file names.")
@click.option(
    '--insecure-tempdir', 'insecure_tempdir',
    envvar='GPGEDIT_INSECURE_TEMPDIR',
    default=False,
    is_flag=True,
    help=f"Let $EDITOR write decrypted text to a disk if {VOLATILE_TEMPDIR} is missing.")
@click.pass_context
def main(ctx, debug: bool, **options):
    logging.basicConfig(level=(logging.DEBUG if debug else logging.WARNING))
    ctx.obj = App(config=Config(**options))


@main.command()
def version():
    """Show the application version."""
    click.echo(f"gpgedit {__version__}")


@main.command()
@click.pass_obj
def info(app: App):
    """Show what the gpg command supports."""
    engine = app.orchestrator.engine
    click.echo(f"gpg {engine.version}")
    click.echo(f"Home: {engine.home}")
    click.echo(f"Ciphers: {', '.join(engine.cipher)}")
    click.echo(f"Hashes: {', '.join(engine.hash)}")


@main.command()
@existing_path_argument
@click.pass_obj
def classify(app: App, path: pathlib.Path):
    """Show how a file is encrypted."""
    classification = app.orchestrator.classifier.classify(path)
    directory = app.orchestrator.directory
    click.echo(f"Scheme: {classification.scheme.value}")
    click.echo(f"Cipher: {classification.cipher or 'default'}")
    click.echo(f"Armored: {'yes' if classification.armored else 'no'}")
    for ref in classification.recipients:
        if isinstance(ref, Known):
            click.echo(f"Recipient: {directory.display(ref.identity) or ref.identity}")
        else:
            click.echo(f"Recipient: {ref}")


@main.command()
@existing_path_argument
@click.pass_obj
def cat(app: App, path: pathlib.Path):
    """Print the decrypted contents of a file."""
    buffer = app.open(path)
    try:
        click.echo(buffer.text, nl=False)
    finally:
        app.orchestrator.on_close(buffer)


@main.command()
@click.option(
    '--recipients/--no-recipients', 'edit_recipients',
    default=False,
    help="Edit the recipients before the contents.")
@click.option(
    '--options/--no-options', 'edit_options',
    default=False,
    help="Edit the gpg options before the contents.")
@path_argument
@click.pass_obj
def edit(app: App, path: pathlib.Path, edit_recipients: bool, edit_options: bool):
    """
    Edit an encrypted file without creating decrypted plaintext.

    New files are created if the path does not exist.
    """
    buffer = app.open(path)
    gpg = app.orchestrator
    try:
        if edit_recipients:
            gpg.edit_recipients(buffer)
        if edit_options:
            gpg.edit_options(buffer)

        extension = ''.join(path.suffixes[-2:-1]) or '.txt'
        text = edit_text(
            buffer.text, extension=extension, insecure=app.config.insecure_tempdir)
        if text is not None and text != buffer.text:
            buffer.text = text
            buffer.modified = True
            gpg.on_modify(buffer)

        if not buffer.modified:
            raise GPGEditException("No changes were made to the file")

        gpg.on_write(buffer)
        click.echo(f"Saved {rel(path)}")
    finally:
        gpg.on_close(buffer)


@main.command()
@existing_path_argument
@click.pass_obj
def recipients(app: App, path: pathlib.Path):
    """Change who a file is encrypted for."""
    buffer = app.open(path)
    gpg = app.orchestrator
    try:
        gpg.edit_recipients(buffer)
        if not buffer.modified:
            raise GPGEditException("No changes were made to the recipients")
        gpg.on_write(buffer)
        click.echo(f"Saved {rel(path)}")
    finally:
        gpg.on_close(buffer)


@main.command()
@existing_path_argument
@click.pass_obj
def options(app: App, path: pathlib.Path):
    """
    Change the gpg options a file is encrypted with.

    There is no check of the options: refer to the gpg documentation.
    """
    buffer = app.open(path)
    gpg = app.orchestrator
    try:
        if gpg.edit_options(buffer) is None or not buffer.modified:
            raise GPGEditException("No changes were made to the options")
        gpg.on_write(buffer)
        click.echo(f"Saved {rel(path)}")
    finally:
        gpg.on_close(buffer)


@main.command(name='view-recipients')
@existing_path_argument
@click.pass_obj
def view_recipients(app: App, path: pathlib.Path):
    """List who a file is encrypted for."""
    buffer = app.open(path)
    try:
        app.orchestrator.view_recipients(buffer)
    finally:
        app.orchestrator.on_close(buffer)


@main.command(name='view-options')
@existing_path_argument
@click.pass_obj
def view_options(app: App, path: pathlib.Path):
    """List the gpg options a file is encrypted with."""
    buffer = app.open(path)
    try:
        app.orchestrator.view_options(buffer)
    finally:
        app.orchestrator.on_close(buffer)
