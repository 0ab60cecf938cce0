"""
Argon2id password hashes in the common encoded form

    $argon2id$v=19$m=<memory KiB>,t=<iterations>,p=<parallelism>$<salt>$<key>

where salt and key are standard base64 without padding. Strings are interchangeable
with other implementations of this encoding, e.g. argon2-cffi's PasswordHasher.
"""

import base64
import binascii
import hmac
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from argon import ARGON2_VERSION, derive_key, random_bytes
from errors import DecodeError, FormatError, VersionError
from params import Argon2Parameters, current_configuration, normalize

logger = logging.getLogger(__name__)

IDENTIFIER = "argon2id"
DELIMITER = "$"

# field widths of the encoded parameters
MAX_UINT32 = 2 ** 32 - 1
MAX_UINT8 = 2 ** 8 - 1

# lower bounds of the Argon2 primitive
MIN_SALT_LENGTH = 8
MIN_KEY_LENGTH = 4
MIN_MEMORY_PER_LANE = 8

_VERSION_RE = re.compile(r"v=([+-]?[0-9]{1,10})")
_PARAMS_RE = re.compile(r"m=([0-9]{1,10}),t=([0-9]{1,10}),p=([0-9]{1,10})")


@dataclass(frozen=True)
class DecodedHash:
    """
    Contents of an encoded hash. The parameters are local to the decoding call,
    salt_length and key_length are taken from the decoded bytes.
    """

    parameters: Argon2Parameters
    salt: bytes
    key: bytes
    version: int = ARGON2_VERSION


def hash_password(password: Union[bytes, str], params: Optional[Argon2Parameters] = None) -> str:
    """
    Hashes the password with a fresh random salt.

    :param password: password bytes, str is encoded as utf-8
    :param params: parameters to use, the process-wide configuration if omitted

    :return: encoded hash
    """

    params = current_configuration() if params is None else normalize(params)
    _check_field_widths(params)

    salt = random_bytes(params.salt_length)
    key = derive_key(_to_bytes(password),
                     salt,
                     params.iterations,
                     params.memory_kib,
                     params.parallelism,
                     params.key_length)

    return encode_hash(salt, key, params)


def verify_password(password: Union[bytes, str], encoded: str) -> bool:
    """
    Checks the password against an encoded hash. Only the parameters embedded
    in the hash are used, the configuration is not consulted.

    :param password: candidate password, str is encoded as utf-8
    :param encoded: encoded hash as returned by hash_password

    :return: True if the password matches, False otherwise
    """

    decoded = decode_hash(encoded)
    params = decoded.parameters

    key = derive_key(_to_bytes(password),
                     decoded.salt,
                     params.iterations,
                     params.memory_kib,
                     params.parallelism,
                     len(decoded.key))

    return hmac.compare_digest(key, decoded.key)


def needs_rehash(encoded: str, params: Optional[Argon2Parameters] = None) -> bool:
    """
    Tells whether a stored hash was made with parameters other than params
    (the process-wide configuration if omitted).
    """

    target = current_configuration() if params is None else normalize(params)
    return decode_hash(encoded).parameters != target


def encode_hash(salt: bytes, key: bytes, params: Argon2Parameters) -> str:
    return (f"{DELIMITER}{IDENTIFIER}"
            f"{DELIMITER}v={ARGON2_VERSION}"
            f"{DELIMITER}m={params.memory_kib},t={params.iterations},p={params.parallelism}"
            f"{DELIMITER}{_b64encode(salt)}"
            f"{DELIMITER}{_b64encode(key)}")


def decode_hash(encoded: str) -> DecodedHash:
    """
    Parses an encoded hash.

    :param encoded: encoded hash
    :return: DecodedHash

    :raises FormatError: wrong number of fields, unknown identifier, unparsable segments or values
                         the Argon2 primitive does not accept
    :raises VersionError: the version is not the one implemented here
    :raises DecodeError: salt or key are not strict unpadded base64
    """

    vals = encoded.split(DELIMITER)
    if len(vals) != 6 or vals[0] != "" or vals[1] != IDENTIFIER:
        _reject("argon2id hash is not in the correct format")

    # version gate
    match = _VERSION_RE.fullmatch(vals[2])
    if match is None:
        _reject(f"invalid version segment: {vals[2]!r}")
    version = int(match.group(1))
    if version != ARGON2_VERSION:
        logger.debug("rejected argon2id hash with version %d", version)
        raise VersionError(ARGON2_VERSION, version)

    match = _PARAMS_RE.fullmatch(vals[3])
    if match is None:
        _reject(f"invalid parameter segment: {vals[3]!r}")
    memory_kib, iterations, parallelism = (int(g) for g in match.groups())
    if not (0 < memory_kib <= MAX_UINT32 and 0 < iterations <= MAX_UINT32 and 0 < parallelism <= MAX_UINT8):
        _reject(f"parameters out of range: {vals[3]!r}")

    if memory_kib < MIN_MEMORY_PER_LANE * parallelism:
        _reject(f"memory below {MIN_MEMORY_PER_LANE} KiB per lane: {vals[3]!r}")

    salt = _b64decode(vals[4], "salt")
    key = _b64decode(vals[5], "key")
    if len(salt) < MIN_SALT_LENGTH:
        _reject(f"salt shorter than {MIN_SALT_LENGTH} bytes")
    if len(key) < MIN_KEY_LENGTH:
        _reject(f"key shorter than {MIN_KEY_LENGTH} bytes")

    return DecodedHash(
        parameters=Argon2Parameters(memory_kib=memory_kib,
                                    iterations=iterations,
                                    parallelism=parallelism,
                                    salt_length=len(salt),
                                    key_length=len(key)),
        salt=salt,
        key=key,
        version=version
    )


def _reject(message):
    logger.debug("rejected argon2id hash: %s", message)
    raise FormatError(message)


def _check_field_widths(params):
    if params.memory_kib > MAX_UINT32 or params.iterations > MAX_UINT32:
        raise ValueError("memory_kib and iterations must fit into 32 bits")
    if params.parallelism > MAX_UINT8:
        raise ValueError("parallelism must fit into 8 bits")
    if params.memory_kib < MIN_MEMORY_PER_LANE * params.parallelism:
        raise ValueError(f"memory_kib must be at least {MIN_MEMORY_PER_LANE} per lane")
    if params.salt_length < MIN_SALT_LENGTH:
        raise ValueError(f"salt_length must be at least {MIN_SALT_LENGTH} bytes")
    if params.key_length < MIN_KEY_LENGTH:
        raise ValueError(f"key_length must be at least {MIN_KEY_LENGTH} bytes")


def _to_bytes(password):
    if isinstance(password, str):
        return password.encode("utf-8")
    return bytes(password)


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _b64decode(segment: str, name: str) -> bytes:
    """
    Strict decoding of unpadded standard base64: padding, characters outside the
    alphabet and non-zero trailing bits are rejected.
    """

    if segment == "" or "=" in segment or len(segment) % 4 == 1:
        raise DecodeError(f"invalid base64 {name}")

    try:
        data = base64.b64decode(segment + "=" * (-len(segment) % 4), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"invalid base64 {name}") from e

    # non-canonical encodings decode fine but do not encode back to the same text
    if _b64encode(data) != segment:
        raise DecodeError(f"non-canonical base64 {name}")

    return data
