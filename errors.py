class Argon2idError(Exception):
    """
    Base class of all errors raised while hashing or verifying passwords.
    """


class RandomSourceError(Argon2idError):
    """
    The secure random source failed to deliver salt bytes.
    """


class FormatError(Argon2idError, ValueError):
    """
    The encoded hash has the wrong shape: field count, identifier,
    version segment or parameter segment.
    """


class VersionError(Argon2idError):
    """
    The encoded hash was produced by an incompatible Argon2 revision.

    :param expected: version implemented here
    :param got: version found in the encoded hash
    """

    def __init__(self, expected: int, got: int):
        super().__init__(f"incorrect argon2 version. expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class DecodeError(Argon2idError, ValueError):
    """
    The salt or key segment is not strict unpadded base64.
    """


class DerivationError(Argon2idError):
    """
    The Argon2id primitive rejected its inputs.
    """
