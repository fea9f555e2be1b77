import typing

import click.testing
import pytest

import gpgedit.cli
from gpgedit import __version__

from .conftest import ALICE, BOB_WORK, KEYRING


@pytest.fixture()
def keyring(tmp_path, monkeypatch):
    """Colon listings the fake engine answers --list-keys queries with."""
    path = tmp_path / 'keyring'
    path.mkdir()
    for query, listing in KEYRING.items():
        (path / query).write_text(listing)
    monkeypatch.setenv('FAKE_GPG_KEYRING', str(path))
    return path


@pytest.fixture()
def calls(tmp_path, monkeypatch):
    """The arguments of every fake engine run, one line each."""
    path = tmp_path / 'calls.log'
    monkeypatch.setenv('FAKE_GPG_LOG', str(path))
    return lambda: path.read_text().splitlines()


@pytest.fixture()
def invoke(engine, monkeypatch):
    monkeypatch.delenv('VISUAL', raising=False)
    monkeypatch.delenv('FAKE_GPG_FAIL', raising=False)

    def invoke_func(
            arguments: typing.Sequence[str],
            exit_code: int = 0,
            input: typing.Optional[str] = None):
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(
            gpgedit.cli.main,
            ['--executable', str(engine), '--no-tty', *arguments],
            input=input)
        if result.exit_code != exit_code:
            message = f"Command gpgedit {' '.join(arguments)} exited with {result.exit_code}"
            raise Exception(f"{message}:\n{result.output}") from result.exception
        return result.output.splitlines()

    return invoke_func


@pytest.fixture()
def secret(tmp_path):
    path = tmp_path / 'secret.txt.gpg'
    path.write_bytes(b'FAKE ENCRYPTED\nold line\n')
    return path


def test_version(invoke):
    assert invoke(['version']) == [f'gpgedit {__version__}']


def test_info(invoke):
    assert 'Ciphers: AES, AES256' in invoke(['info'])


def test_classify(invoke, secret):
    assert invoke(['classify', str(secret)]) == [
        'Scheme: symmetric', 'Cipher: AES256', 'Armored: no']


def test_cat(invoke, secret):
    assert invoke(['cat', str(secret)]) == ['old line']


def test_cat_requires_a_matching_name(invoke, tmp_path):
    path = tmp_path / 'secret.txt'
    path.write_text('plain')
    assert 'does not match' in invoke(['cat', str(path)], exit_code=1)[-1]


def test_view_options(invoke, secret):
    assert invoke(['view-options', str(secret)]) == [
        'The following options are set:', 'symmetric', 'cipher-algo AES256']


def test_edit(invoke, secret, monkeypatch):
    monkeypatch.setenv('EDITOR', 'sed -i s/old/new/')
    invoke(['edit', str(secret)])
    assert secret.read_bytes() == b'FAKE ENCRYPTED\nnew line\n'


def test_edit_without_changes(invoke, secret, monkeypatch):
    monkeypatch.setenv('EDITOR', 'true')
    output = invoke(['edit', str(secret)], exit_code=1)
    assert output[-1] == 'Error: No changes were made to the file'
    assert secret.read_bytes() == b'FAKE ENCRYPTED\nold line\n'


def test_edit_failure_leaves_file_untouched(invoke, secret, monkeypatch):
    monkeypatch.setenv('EDITOR', 'sed -i s/old/new/')
    monkeypatch.setenv('FAKE_GPG_FAIL', '1')
    output = invoke(['edit', str(secret)], exit_code=1)
    assert 'Message could not be encrypted! (Press ENTER)' in output
    assert secret.read_bytes() == b'FAKE ENCRYPTED\nold line\n'
    assert sorted(p.name for p in secret.parent.iterdir()) == ['fake-gpg', 'secret.txt.gpg']


def test_edit_refuses_a_disk_backed_tempdir(invoke, secret, monkeypatch, tmp_path):
    monkeypatch.setattr(gpgedit.cli, 'VOLATILE_TEMPDIR', tmp_path / 'missing')
    monkeypatch.setenv('EDITOR', 'sed -i s/old/new/')
    output = invoke(['edit', str(secret)], exit_code=1)
    assert output[-1].endswith("Use --insecure-tempdir to allow this.")
    assert secret.read_bytes() == b'FAKE ENCRYPTED\nold line\n'


def test_edit_with_an_insecure_tempdir(invoke, secret, monkeypatch, tmp_path):
    monkeypatch.setattr(gpgedit.cli, 'VOLATILE_TEMPDIR', tmp_path / 'missing')
    monkeypatch.setenv('EDITOR', 'sed -i s/old/new/')
    invoke(['--insecure-tempdir', 'edit', str(secret)])
    assert secret.read_bytes() == b'FAKE ENCRYPTED\nnew line\n'


def test_recipients(invoke, secret, keyring, calls, monkeypatch):
    monkeypatch.setenv('EDITOR', 'echo alice >>')
    invoke(['recipients', str(secret)])
    assert calls()[-1].endswith(f'--symmetric --cipher-algo AES256 --recipient {ALICE}')
    assert secret.read_bytes() == b'FAKE ENCRYPTED\nold line\n'


def test_recipients_ambiguous_name(invoke, secret, keyring, calls, monkeypatch):
    monkeypatch.setenv('EDITOR', 'echo bob >>')
    output = invoke(['recipients', str(secret)], input='x\n1\n')
    menu = 'The name "bob" is ambiguous. Please select the correct key:'
    assert output.count(menu) == 2
    assert calls()[-1].endswith(f'--recipient {BOB_WORK}')


def test_recipients_unknown_declined(invoke, secret, keyring, calls, monkeypatch):
    monkeypatch.setenv('EDITOR', 'echo nobody >>')
    output = invoke(['recipients', str(secret)], exit_code=1, input='n\n')
    assert 'There are unknown recipients: nobody' in output
    assert not any('--no-encrypt-to' in call for call in calls())
    assert secret.read_bytes() == b'FAKE ENCRYPTED\nold line\n'


def test_recipients_unknown_confirmed(invoke, secret, keyring, calls, monkeypatch):
    monkeypatch.setenv('EDITOR', 'printf "nobody\\nalice\\n" >>')
    invoke(['recipients', str(secret)], input='y\n')
    assert calls()[-1].endswith(f'--symmetric --cipher-algo AES256 --recipient {ALICE}')


def test_options(invoke, secret, calls, monkeypatch):
    monkeypatch.setenv('EDITOR', 'echo armor >>')
    invoke(['options', str(secret)])
    assert calls()[-1].endswith('--symmetric --cipher-algo AES256 --armor')


def test_options_without_changes(invoke, secret, monkeypatch):
    monkeypatch.setenv('EDITOR', 'true')
    output = invoke(['options', str(secret)], exit_code=1)
    assert output[-1] == 'Error: No changes were made to the options'


def test_view_recipients(invoke, secret):
    assert invoke(['view-recipients', str(secret)]) == ['The following recipients are set:']
