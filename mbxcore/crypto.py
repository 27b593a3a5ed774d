"""
mbxshell Fingerprints
Short SHA-256 digests of command payloads.

Logs on both sides record the fingerprint instead of the command text, so an
operator can match a host submission with the guest execution that served it.
"""

from Crypto.Hash import SHA256

FINGERPRINT_CHARS = 12


def fingerprint(text: str, encoding: str = "utf-8") -> str:
    """Hex prefix of the SHA-256 of `text` as it travels on disk."""
    digest = SHA256.new(text.encode(encoding, errors="replace"))
    return digest.hexdigest()[:FINGERPRINT_CHARS]
