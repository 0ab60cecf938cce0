import logging
import os

from argon2.exceptions import HashingError
from argon2.low_level import ARGON2_VERSION, Type, hash_secret_raw

from errors import DerivationError, RandomSourceError

logger = logging.getLogger(__name__)

# argon2 revision 1.3, written as v=19 in encoded hashes
assert ARGON2_VERSION == 19


def derive_key(password: bytes,
               salt: bytes,
               iterations: int,
               memory_kib: int,
               parallelism: int,
               key_length: int) -> bytes:
    """
    Derives a key with Argon2id.

    :param password: Message can have any length from 0 to 2^32 − 1 bytes
    :param salt: Nonce can have any length from 8 to 2^32 − 1 bytes
    :param iterations: Number of iterations can be any integer number from 1 to 2^32 − 1
    :param memory_kib: Memory size can be any integer number of kilobytes from 8p to 2^32 − 1 (p: degree of parallelism)
    :param parallelism: Degree of parallelism determines how many independent (but synchronizing) computational chains
                        can be run. It can be any integer value from 1 to 2^24 − 1
    :param key_length: Length of output. It can be any integer number of bytes from 4 to 2^32 − 1

    :return: key of length key_length
    """

    try:
        return hash_secret_raw(
            secret=password,
            salt=salt,
            time_cost=iterations,
            memory_cost=memory_kib,
            parallelism=parallelism,
            hash_len=key_length,
            type=Type.ID,
            version=ARGON2_VERSION
        )
    except HashingError as e:
        raise DerivationError(str(e)) from e


def random_bytes(n: int) -> bytes:
    """
    Reads n bytes from the operating system CSPRNG.

    :param n: number of bytes
    :return: n random bytes
    """

    try:
        data = os.urandom(n)
    except OSError as e:
        logger.warning("secure random source failed: %s", e)
        raise RandomSourceError(f"could not read {n} random bytes") from e

    if len(data) != n:
        raise RandomSourceError(f"short read from random source: {len(data)} of {n} bytes")

    return data
