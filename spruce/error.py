"""Spruce error types."""


class SpruceError(Exception):
    """Base exception for Spruce protocol errors."""
    pass


class ConfigError(SpruceError):
    """Configuration error."""
    pass


class HandshakeError(SpruceError):
    """Handshake rejected; no session key was produced."""

    def __init__(self, message: str = "", state=None):
        super().__init__(message)
        # Failed state recorded by the handshake engine, if any
        self.state = state


class InvalidKeyEncoding(HandshakeError):
    """Malformed key or ciphertext bytes (wrong length or not a valid point)."""
    pass


class SignatureVerificationFailed(HandshakeError):
    """Transcript signature did not verify."""
    pass


class NotFound(HandshakeError):
    """Peer identity unknown to the key directory."""
    pass


class ReplayDetected(HandshakeError):
    """Handshake transcript was already consumed."""
    pass


class DecryptError(SpruceError):
    """Message could not be opened."""
    pass


class AuthenticationFailure(DecryptError):
    """AEAD authentication failed."""
    pass


class SessionClosed(SpruceError):
    """Session key was already destroyed."""
    pass


class SessionExhausted(SpruceError):
    """Session message limit reached; a new handshake is required."""
    pass
