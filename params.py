import logging
import threading
from dataclasses import dataclass, fields
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# floor defaults, substituted for any non-positive value
MEMORY_KIB = 64 * 1024
ITERATIONS = 1
PARALLELISM = 2
SALT_LENGTH = 16
KEY_LENGTH = 32


@dataclass(frozen=True)
class Argon2Parameters:
    """
    Argon2id tuning parameters.

    :param memory_kib: memory cost in KiB
    :param iterations: time cost, number of passes over memory
    :param parallelism: number of lanes
    :param salt_length: length of the random salt in bytes, 16 is recommended for password hashing
    :param key_length: length of the derived key in bytes
    """

    memory_kib: int = MEMORY_KIB
    iterations: int = ITERATIONS
    parallelism: int = PARALLELISM
    salt_length: int = SALT_LENGTH
    key_length: int = KEY_LENGTH


DEFAULT = Argon2Parameters()


def normalize(candidate=None) -> Argon2Parameters:
    """
    Returns a fully valid parameter set: every field of candidate which is missing
    or not positive is replaced by its default, all other fields are kept.

    :param candidate: Argon2Parameters, a mapping or any object with the parameter attributes
    :return: normalized Argon2Parameters
    """

    if candidate is None:
        return DEFAULT

    values = {}
    for field in fields(Argon2Parameters):
        if isinstance(candidate, dict):
            value = candidate.get(field.name)
        else:
            value = getattr(candidate, field.name, None)

        value = 0 if value is None else int(value)
        if value <= 0:
            value = getattr(DEFAULT, field.name)
        values[field.name] = value

    return Argon2Parameters(**values)


class Configuration:
    """
    Holder of the active parameter set. Readers and the writer are serialized
    by one lock and the set is swapped as a whole, so a reader sees either the
    old or the new parameters, never a mix.
    """

    def __init__(self, candidate=None):
        self._lock = threading.Lock()
        self._params = normalize(candidate)

    def set(self, candidate) -> Argon2Parameters:
        params = normalize(candidate)
        with self._lock:
            self._params = params
        logger.debug("argon2id configuration set to %s", params)
        return params

    def current(self) -> Argon2Parameters:
        with self._lock:
            return self._params


_configuration = Configuration()


def set_configuration(candidate) -> Argon2Parameters:
    """
    Replaces the process-wide parameters with normalize(candidate).

    :return: the parameters now in effect
    """
    return _configuration.set(candidate)


def current_configuration() -> Argon2Parameters:
    return _configuration.current()


def reset_configuration() -> Argon2Parameters:
    return _configuration.set(DEFAULT)


class Argon2Settings(BaseSettings):
    """Argon2id parameters from the environment, variables prefixed ``ARGON2ID_``. Unset means default."""

    model_config = SettingsConfigDict(
        env_prefix="ARGON2ID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    memory_kib: int = 0
    iterations: int = 0
    parallelism: int = 0
    salt_length: int = 0
    key_length: int = 0


def configure_from_env(settings: Optional[Argon2Settings] = None) -> Argon2Parameters:
    """
    Installs the parameters described by the environment as the process-wide configuration.

    :param settings: settings to use instead of reading the environment
    :return: the parameters now in effect
    """

    if settings is None:
        settings = Argon2Settings()
    return set_configuration(settings)
