"""
Settings.py

Configuration constants shared by the envelope core, the key sources and the
command line tool. Values that a user may want to change are also exposed
as SealMessage.py options.
"""

import os

# Session key: raw random bytes per envelope (base64 encoded before use)
SESSION_KEY_BYTES = 32

# OpenSSL "enc -salt" compatible payload layout
SALT_MAGIC = b'Salted__'
SALT_BYTES = 8
AES_KEY_BYTES = 32   # AES-256
AES_IV_BYTES = 16

# Transport container (uuencode layout)
UU_LINE_BYTES = 45           # binary bytes per encoded line
BLOCK_FILE_MODE = '600'      # mode field written on every 'begin' line
PAYLOAD_BLOCK_NAME = 'message'

# Only this SSH key type can wrap a session key
RSA_KEY_TYPE = 'ssh-rsa'

# Default local key material
SSH_DIR = os.path.join(os.path.expanduser('~'), '.ssh')
DEFAULT_PUBLIC_KEY = os.path.join(SSH_DIR, 'id_rsa.pub')
DEFAULT_PRIVATE_KEY = os.path.join(SSH_DIR, 'id_rsa')

# Directory service that publishes users' public keys, one per line
KEY_SERVICE_ENV = 'SSHSEAL_KEY_SERVICE'
DEFAULT_KEY_SERVICE = 'https://github.com/{user}.keys'
HTTP_TIMEOUT = 10.0  # seconds


def key_service_url() -> str:
    """Returns the directory URL template, honouring SSHSEAL_KEY_SERVICE."""
    return os.environ.get(KEY_SERVICE_ENV) or DEFAULT_KEY_SERVICE
