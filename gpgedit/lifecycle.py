"""
Hooks for the host editor's buffer events.

The host calls on_read() when a matching file is opened, on_modify() when its
contents change, on_write() when it is saved and on_close() when the buffer
goes away. Each one runs to completion before returning.
"""

import logging
import pathlib
import typing

import attr

from .classify import Classifier
from .config import Config
from .editors import OptionsEditor, RecipientsEditor
from .gpg import GPG
from .host import Buffer, Host
from .recipients import Directory, Known, RecipientList
from .session import Session, SessionTable, State, default_options
from .utils import (DecryptError, EncryptError, GPGEditException, NotEncrypted,
                    is_new_file, matches, replace_atomically)

log = logging.getLogger(__name__)

NOT_ENCRYPTED = "File is not encrypted, all GPG functions disabled!"


class Orchestrator:
    def __init__(
            self,
            host: Host,
            config: typing.Optional[Config] = None,
            gpg: typing.Optional[GPG] = None):
        self.host = host
        self.config = config or Config()
        self.gpg = gpg or GPG(self.config, settings=host.settings)
        self.engine = self.gpg.version()
        log.debug(f"Using gpg {self.engine.version} with home {self.engine.home}")
        if not self.config.use_agent and self.engine.agent_required:
            host.warn(f"gpg {self.engine.version} always uses gpg-agent, ignoring --no-agent")
            self.gpg = attr.evolve(self.gpg, config=attr.evolve(self.gpg.config, use_agent=True))

        self.sessions = SessionTable()
        self.directory = Directory(self.gpg, chooser=host.choose)
        self.classifier = Classifier(
            self.gpg, self.directory, ciphers=self.engine.cipher, warn=host.warn)
        self.recipients_editor = RecipientsEditor(
            host, self.sessions, self.config, self.directory)
        self.options_editor = OptionsEditor(host, self.sessions, self.config)
        self._saved_settings: typing.Dict[str, typing.Any] = {}

    def matches(self, path: pathlib.Path) -> bool:
        return matches(path, self.config.patterns)

    def session(self, buffer: Buffer) -> Session:
        session = self.sessions.get(buffer.id)
        if session is None:
            raise NotEncrypted(f"{buffer.name} is not handled by gpgedit")
        return session

    def harden(self, buffer: Buffer) -> None:
        """Stop the host keeping plaintext in swap files, undo files or history."""
        self.host.harden(buffer)
        if 'history' not in self._saved_settings:
            self._saved_settings['history'] = self.host.settings.get('history')
        self.host.settings['history'] = False

    def restore(self) -> None:
        """Give the host its settings back once no encrypted file is open."""
        if not self.sessions and self._saved_settings:
            self.host.settings.update(self._saved_settings)
            self._saved_settings.clear()

    def on_read(self, buffer: Buffer) -> Session:
        assert buffer.path is not None, f"Buffer {buffer.name} has no file"
        path = buffer.path

        session = self.sessions.create(buffer.id)
        session.transition(State.READING)
        self.harden(buffer)

        if is_new_file(path):
            log.info(f"{path} is a new file")
            self.new_file(buffer, session)
            return session

        classification = self.classifier.classify(path)
        if not classification.encrypted:
            self.host.warn(NOT_ENCRYPTED)
            session.encrypted = False
            buffer.decode(path.read_bytes())
            buffer.modified = False
            session.transition(State.PLAINTEXT)
            return session

        session.set_options(classification.options())
        session.set_recipients(classification.recipients)

        result = self.gpg.decrypt(path)
        if not result.ok:
            buffer.wipe()
            self.sessions.remove(buffer.id)
            self.restore()
            self.host.acknowledge("Message could not be decrypted! (Press ENTER)")
            raise DecryptError(f"Could not decrypt {path}")

        buffer.decode(result.stdout)
        buffer.modified = False
        session.transition(State.ENCRYPTED)
        return session

    def new_file(self, buffer: Buffer, session: Session) -> None:
        buffer.wipe()
        session.set_recipients(
            self.directory.resolve_ref(name)
            for name in self.config.default_recipients)
        session.transition(State.EDITING)
        if not self.config.prefer_symmetric:
            self.edit_recipients(buffer)

    def on_modify(self, buffer: Buffer) -> None:
        session = self.sessions.get(buffer.id)
        if session is not None and session.state is not State.EDITING:
            session.transition(State.EDITING)

    def on_write(self, buffer: Buffer) -> None:
        assert buffer.path is not None, f"Buffer {buffer.name} has no file"
        session = self.session(buffer)
        session.transition(State.WRITING)

        written = False
        try:
            if session.encrypted:
                self.encrypt(buffer, session)
            else:
                self.host.warn(NOT_ENCRYPTED)
                self.write_plaintext(buffer)
            written = True
        finally:
            if not written:
                session.transition(State.EDITING)

        buffer.modified = False
        session.transition(State.ENCRYPTED if session.encrypted else State.PLAINTEXT)

    def write_plaintext(self, buffer: Buffer) -> None:
        path = typing.cast(pathlib.Path, buffer.path)
        try:
            replace_atomically(path, lambda output: output.write(buffer.encode()))
        except OSError as error:
            raise GPGEditException(f"Could not write {path}: {error.strerror}") from error

    def check_recipients(self, recipients: RecipientList) -> RecipientList:
        """Resolve recipients again, in case the keyring has changed."""
        checked = RecipientList()
        for ref in recipients:
            name = ref.identity if isinstance(ref, Known) else ref.text
            checked.add(self.directory.resolve_ref(name))
        return checked

    def encrypt(self, buffer: Buffer, session: Session) -> None:
        path = typing.cast(pathlib.Path, buffer.path)

        if not session.options:
            session.set_options(default_options(self.config, path))

        recipients = self.check_recipients(session.recipients)
        if recipients.unknown:
            names = ', '.join(ref.text for ref in recipients.unknown)
            self.host.warn(f"There are unknown recipients: {names}")
            if not self.host.confirm("Encrypt the file without the unknown recipients?"):
                raise EncryptError("Not saved. Use 'gpgedit recipients' to correct the recipients.")

        identities = [ref.identity for ref in recipients.known]
        if 'encrypt' in session.options and not identities:
            self.host.acknowledge("There are no recipients! (Press ENTER)")
            raise EncryptError("Not saved. Use 'gpgedit recipients' to add recipients.")

        def write(output: typing.BinaryIO) -> None:
            result = self.gpg.encrypt(
                plaintext=buffer.encode(),
                output=output,
                options=session.options,
                recipients=identities)
            if not result.ok:
                raise EncryptError(f"Could not encrypt {path}")

        log.debug(f"Encrypting {path} for {len(identities)} recipients")
        try:
            replace_atomically(path, write)
        except EncryptError:
            self.host.acknowledge("Message could not be encrypted! (Press ENTER)")
            raise
        except OSError as error:
            self.host.acknowledge(f"Could not write {path}: {error.strerror} (Press ENTER)")
            raise EncryptError(f"Could not write {path}") from error

    def on_close(self, buffer: Buffer) -> None:
        for scratch_id in self.sessions.scratch_for(buffer.id):
            self.recipients_editor.forget(scratch_id)
            self.options_editor.forget(scratch_id)
        self.sessions.remove(buffer.id)
        self.restore()

    def edit_recipients(self, buffer: Buffer) -> Buffer:
        session = self.session(buffer)
        session.transition(State.EDITING)
        return self.recipients_editor.open(buffer)

    def edit_options(self, buffer: Buffer) -> typing.Optional[Buffer]:
        session = self.session(buffer)
        if not session.encrypted:
            self.host.warn(NOT_ENCRYPTED)
            return None
        session.transition(State.EDITING)
        return self.options_editor.open(buffer)

    def view_recipients(self, buffer: Buffer) -> typing.List[str]:
        if not self.session(buffer).encrypted:
            self.host.warn(NOT_ENCRYPTED)
            return []
        return self.recipients_editor.view(buffer)

    def view_options(self, buffer: Buffer) -> typing.List[str]:
        if not self.session(buffer).encrypted:
            self.host.warn(NOT_ENCRYPTED)
            return []
        return self.options_editor.view(buffer)
