"""
SealMessage.py

Command line tool for sharing a secret with the holders of RSA keys.

Actions:
1) encrypt     - Encrypt the input for one or more public keys and write an
                 ASCII container that any one of the recipients can open.
2) decrypt     - Open a container with the local private key.
3) list        - Show the fingerprints a container is addressed to.
4) fingerprint - Show the fingerprints of public keys (to compare with 'list').

Usage:
    python SealMessage.py encrypt [-r KEYFILE]... [-u USER]... [-i IN] [-o OUT]
    python SealMessage.py decrypt [-k PRIVATE_KEY] [-p] [-i IN] [-o OUT]
    python SealMessage.py list [-i IN]
    python SealMessage.py fingerprint [-r KEYFILE]... [-u USER]...

Without -r/-u, 'encrypt' uses ~/.ssh/id_rsa.pub. Without -k, 'decrypt' uses
~/.ssh/id_rsa. Input and output default to stdin/stdout.

Status lines go to stderr, so stdout only ever carries the container or the
recovered plaintext.
"""

import argparse
import getpass
import logging
import sys

import httpx
from termcolor import colored

from Seal_Functions.EnvelopeManager import EnvelopeDecryptor, EnvelopeEncryptor
from Seal_Functions.Errors import NoSupportedKeys, SealError
from Seal_Functions.KeyNormalizer import normalize_keys
from Seal_Functions.KeySources import (
    default_public_keys,
    fetch_directory_keys,
    read_key_file,
    read_private_key_file,
)
from Seal_Functions.Settings import DEFAULT_PRIVATE_KEY, HTTP_TIMEOUT
from Seal_Functions.Workspace import Workspace

# ---------------------------
# Exit codes
# ---------------------------
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def report(text: str, color: str = 'white') -> None:
    """Prints one colored status line to stderr."""
    print(colored(f"[SEAL] {text}", color), file=sys.stderr)


def read_input(path: str) -> bytes:
    if path in (None, '-'):
        return sys.stdin.buffer.read()
    with open(path, 'rb') as file:
        return file.read()


def write_output(data: bytes, path: str) -> None:
    if path in (None, '-'):
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return
    with open(path, 'wb') as file:
        file.write(data)


def collect_public_keys(args) -> list:
    """
    Gathers raw candidate keys from every -r file and -u directory user.
    Falls back to our own public key when neither was given.
    """
    raw_keys = []
    for path in args.recipient_files:
        raw_keys.extend(read_key_file(path))

    if args.users:
        # One connection pool for every lookup
        with httpx.Client(timeout=HTTP_TIMEOUT, follow_redirects=True) as client:
            for user in args.users:
                raw_keys.extend(fetch_directory_keys(user, args.key_service, client))

    if not raw_keys:
        raw_keys = default_public_keys()
    return raw_keys


def normalize_and_report(raw_keys) -> list:
    try:
        normalized = normalize_keys(raw_keys)
    except NoSupportedKeys as e:
        # Every key was rejected: show why before the fatal error line
        for source, reason in e.details.get('rejected', []):
            report(f"WARNING: skipped key from {source}: {reason}", 'yellow')
        raise
    for source, error in normalized.rejected:
        report(f"WARNING: skipped key from {source}: {error.message}", 'yellow')
    return normalized.recipients


# ---------------------------
# Actions
# ---------------------------

def run_encrypt(args) -> int:
    recipients = normalize_and_report(collect_public_keys(args))
    plaintext = read_input(args.input)

    result = EnvelopeEncryptor().encrypt(plaintext, recipients)
    for fingerprint, error in result.failures:
        report(f"WARNING: could not encrypt for {fingerprint}: {error.message}", 'yellow')

    write_output(result.container.encode('ascii'), args.output)
    report(f"Encrypted for {len(result.recipients)} recipient(s).", 'green')
    return EXIT_OK


def run_decrypt(args) -> int:
    passphrase = None
    if args.ask_passphrase:
        # Read from the terminal, never from argv
        passphrase = getpass.getpass(f"Passphrase for {args.identity}: ")

    with Workspace() as workspace:
        private_key = read_private_key_file(args.identity, workspace, passphrase)
        container = read_input(args.input)
        plaintext = EnvelopeDecryptor().decrypt(container, None, private_key)

    write_output(plaintext, args.output)
    report("Decrypted.", 'green')
    return EXIT_OK


def run_list(args) -> int:
    for fingerprint in EnvelopeDecryptor().recipients(read_input(args.input)):
        print(fingerprint)
    return EXIT_OK


def run_fingerprint(args) -> int:
    for recipient in normalize_and_report(collect_public_keys(args)):
        print(f"{recipient.fingerprint}  {recipient.source}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='SealMessage.py',
        description="Encrypt a secret for the holders of RSA (SSH) keys.",
    )
    parser.add_argument('-v', '--verbose', action='store_true', help="Show debug logging on stderr")
    actions = parser.add_subparsers(dest='action', required=True)

    def add_key_options(sub):
        sub.add_argument('-r', '--recipient', dest='recipient_files', action='append', default=[],
                         metavar='KEYFILE', help="Public key file (authorized_keys, .pub, PEM); repeatable")
        sub.add_argument('-u', '--user', dest='users', action='append', default=[],
                         metavar='USER', help="Directory username whose published keys to use; repeatable")
        sub.add_argument('--key-service', default=None, metavar='URL',
                         help="Directory URL template containing {user}")

    encrypt = actions.add_parser('encrypt', help="Encrypt input for one or more recipients")
    add_key_options(encrypt)
    encrypt.add_argument('-i', '--input', default=None, help="Plaintext file (default: stdin)")
    encrypt.add_argument('-o', '--output', default=None, help="Container file (default: stdout)")
    encrypt.set_defaults(handler=run_encrypt)

    decrypt = actions.add_parser('decrypt', help="Decrypt a container with the local private key")
    decrypt.add_argument('-k', '--identity', default=DEFAULT_PRIVATE_KEY,
                         help=f"RSA private key file (default: {DEFAULT_PRIVATE_KEY})")
    decrypt.add_argument('-p', '--ask-passphrase', action='store_true',
                         help="Prompt for the passphrase of an encrypted private key")
    decrypt.add_argument('-i', '--input', default=None, help="Container file (default: stdin)")
    decrypt.add_argument('-o', '--output', default=None, help="Plaintext file (default: stdout)")
    decrypt.set_defaults(handler=run_decrypt)

    listing = actions.add_parser('list', help="List the fingerprints a container is addressed to")
    listing.add_argument('-i', '--input', default=None, help="Container file (default: stdin)")
    listing.set_defaults(handler=run_list)

    fingerprint = actions.add_parser('fingerprint', help="Show fingerprints of public keys")
    add_key_options(fingerprint)
    fingerprint.set_defaults(handler=run_fingerprint)

    return parser


def main(argv=None) -> int:
    """
    Entry point. Parses arguments, runs the selected action and maps any
    failure to a red status line and a non-zero exit code.
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.ERROR,
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    try:
        return args.handler(args)
    except SealError as e:
        report(f"ERROR: {e.message}", 'red')
        return EXIT_FAILURE
    except OSError as e:
        report(f"ERROR: {e}", 'red')
        return EXIT_FAILURE
    except KeyboardInterrupt:
        report("Interrupted.", 'yellow')
        return EXIT_INTERRUPTED


# If run as a script, call main()
if __name__ == "__main__":
    sys.exit(main())
