"""
SignVault -- code-signing secrets that travel with the developer.

Keeps signing certificates in step between the local keychain and a
pluggable remote secret backend, and keeps everything else in an
encrypted settings file under ~/.signvault/.
"""

import os

__version__ = "0.1.0"

SIGNVAULT_HOME = os.environ.get("SIGNVAULT_HOME", "~/.signvault")
