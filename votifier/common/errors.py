from typing import Optional


class VotifierError(Exception):
    """Base class for every error raised by the votifier core."""
    pass


class BindFailure(VotifierError):
    """Raised when the listening socket cannot be bound to the configured address."""

    def __init__(self, address, cause: Optional[OSError] = None):
        self.address = address
        self.errno = cause.errno if cause is not None else None
        super().__init__(f"could not bind {address[0]}:{address[1]}: {cause}")


class ServerStateError(VotifierError):
    """Raised when start/stop is called in the wrong server state."""
    pass


class TimeoutFailure(VotifierError):
    """Raised when a connection exceeds its deadline or the peer hangs up early."""
    pass


class DecryptionFailure(VotifierError):
    """Raised when a ciphertext block has the wrong length or bad padding."""
    pass


class EncryptionFailure(VotifierError):
    """Raised when a plaintext does not fit in one RSA block."""
    pass


class MalformedVoteFormat(VotifierError):
    """Raised when decrypted bytes are not a VOTE record."""
    pass


class KeyFileMissing(VotifierError):
    pass


class PublicKeyFileNotFound(KeyFileMissing):
    pass


class PrivateKeyFileNotFound(KeyFileMissing):
    pass


class InvalidKeyFile(VotifierError):
    pass


class InvalidPublicKeyFile(InvalidKeyFile):
    pass


class InvalidPrivateKeyFile(InvalidKeyFile):
    pass


class InvalidKeySize(VotifierError):
    """Raised when a key size is outside the accepted 512..16384 bit range."""
    pass


class IOFailure(VotifierError):
    pass


class InvalidConfig(VotifierError):
    pass


class UnknownKeyKind(VotifierError):
    pass
