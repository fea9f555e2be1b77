"""
gpgedit edits GPG encrypted files without writing plaintext to disk.

Files matching '*.gpg', '*.pgp' or '*.asc' are inspected with a dry-run
decryption to find out how they were encrypted. The contents are decrypted
into memory, edited, and encrypted again for the same recipients with the
same options when saved. The gpg command performs all encryption and
decryption.

Configure default recipients for new files:

\b
    $ export GPGEDIT_RECIPIENTS="gpgedit@example.invalid"

Edit an encrypted file (or create a new one):

\b
    $ gpgedit edit "secrets.txt.gpg"

Change who a file is encrypted for:

\b
    $ gpgedit recipients "secrets.txt.gpg"

Show how a file is encrypted:

\b
    $ gpgedit classify "secrets.txt.gpg"
"""

__version__ = '1.0.0'
