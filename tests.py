import os
import string
import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest import mock

import argon2
import matplotlib

matplotlib.use("Agg")

import argon
import benchmark
import params
from argon2id import decode_hash, encode_hash, hash_password, needs_rehash, verify_password
from errors import DecodeError, DerivationError, FormatError, RandomSourceError, VersionError
from params import Argon2Parameters, Argon2Settings, Configuration, normalize

B64_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/"

FAST = Argon2Parameters(memory_kib=1024, iterations=1, parallelism=1, salt_length=16, key_length=32)
OTHER = Argon2Parameters(memory_kib=2048, iterations=2, parallelism=2, salt_length=24, key_length=48)


class DeriveKeyTest(unittest.TestCase):
    def test_matches_argon2_cffi(self):
        password = b"password"
        salt = b"somesalt"

        key_c = argon2.low_level.hash_secret_raw(
            secret=password,
            salt=salt,
            time_cost=2,
            memory_cost=64,
            parallelism=1,
            hash_len=32,
            type=argon2.low_level.Type.ID
        )

        key = argon.derive_key(password, salt, iterations=2, memory_kib=64, parallelism=1, key_length=32)

        assert key_c == key

    def test_deterministic(self):
        key_1 = argon.derive_key(b"password", b"salt1234", 1, 64, 1, 16)
        key_2 = argon.derive_key(b"password", b"salt1234", 1, 64, 1, 16)

        assert key_1 == key_2
        assert len(key_1) == 16

    def test_short_salt(self):
        with self.assertRaises(DerivationError):
            argon.derive_key(b"password", b"salt", 1, 64, 1, 32)

    def test_random_source_failure(self):
        with mock.patch("argon.os.urandom", side_effect=OSError("no entropy")):
            with self.assertRaises(RandomSourceError):
                argon.random_bytes(16)

    def test_random_source_short_read(self):
        with mock.patch("argon.os.urandom", return_value=b"\0" * 4):
            with self.assertRaises(RandomSourceError):
                argon.random_bytes(16)

    def test_version(self):
        assert argon.ARGON2_VERSION == 19


class NormalizeTest(unittest.TestCase):
    def test_all_zero(self):
        assert normalize(Argon2Parameters(0, 0, 0, 0, 0)) == Argon2Parameters(65536, 1, 2, 16, 32)

    def test_all_positive(self):
        candidate = Argon2Parameters(memory_kib=131072, iterations=3, parallelism=4, salt_length=16, key_length=32)

        assert normalize(candidate) == candidate

    def test_negative_and_partial(self):
        result = normalize({"memory_kib": -1, "iterations": 5, "key_length": 64})

        assert result == Argon2Parameters(memory_kib=65536, iterations=5, parallelism=2, salt_length=16, key_length=64)

    def test_none(self):
        assert normalize(None) == params.DEFAULT

    def test_fractions(self):
        result = normalize({"memory_kib": 2048.9, "iterations": 0.5, "parallelism": 0.99,
                            "salt_length": 16.0, "key_length": -0.5})

        assert result == Argon2Parameters(2048, 1, 2, 16, 32)

    def test_settings_object(self):
        settings = Argon2Settings(memory_kib=2048, iterations=0, parallelism=4, salt_length=0, key_length=0)

        assert normalize(settings) == Argon2Parameters(2048, 1, 4, 16, 32)


class ConfigurationTest(unittest.TestCase):
    def tearDown(self):
        params.reset_configuration()

    def test_defaults(self):
        assert Configuration().current() == params.DEFAULT

    def test_set_normalizes(self):
        config = Configuration()
        config.set(Argon2Parameters(memory_kib=4096, iterations=0, parallelism=0, salt_length=0, key_length=0))

        assert config.current() == Argon2Parameters(4096, 1, 2, 16, 32)

    def test_process_wide(self):
        params.set_configuration(FAST)
        assert params.current_configuration() == FAST

        params.reset_configuration()
        assert params.current_configuration() == params.DEFAULT

    def test_hash_uses_process_wide_configuration(self):
        params.set_configuration(OTHER)
        encoded = hash_password("password")

        assert encoded.startswith("$argon2id$v=19$m=2048,t=2,p=2$")
        assert decode_hash(encoded).parameters == OTHER

    def test_configure_from_env(self):
        env = {
            "ARGON2ID_MEMORY_KIB": "2048",
            "ARGON2ID_ITERATIONS": "3",
            "ARGON2ID_PARALLELISM": "0",
        }
        with mock.patch.dict(os.environ, env):
            result = params.configure_from_env()

        assert result == Argon2Parameters(2048, 3, 2, 16, 32)
        assert params.current_configuration() == result

    def test_concurrent_reconfiguration(self):
        config = Configuration(FAST)
        seen = set()
        stop = threading.Event()

        def writer():
            for i in range(2000):
                config.set(OTHER if i % 2 else FAST)
            stop.set()

        def reader():
            while not stop.is_set():
                seen.add(config.current())

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert seen <= {FAST, OTHER}


class HashTest(unittest.TestCase):
    def test_concrete_scenario(self):
        candidate = Argon2Parameters(memory_kib=65536, iterations=1, parallelism=2, salt_length=16, key_length=32)
        prefix = "$argon2id$v=19$m=65536,t=1,p=2$"

        encoded = hash_password("password", candidate)
        print(encoded)

        assert encoded.startswith(prefix)
        salt, key = encoded[len(prefix):].split("$")
        assert len(salt) == 22
        assert len(key) == 43
        assert len(encoded) == len(prefix) + 22 + 1 + 43

        assert verify_password("password", encoded)
        assert not verify_password("wrong", encoded)

    def test_length_six_digit_memory(self):
        candidate = Argon2Parameters(memory_kib=128 * 1024, iterations=1, parallelism=2, salt_length=16, key_length=32)

        encoded = hash_password(b"password", candidate)

        assert len(encoded) == 98

    def test_round_trip(self):
        for password in [b"", b"password", "pässwörd", b"\x00\xff" * 100]:
            for candidate in [FAST, OTHER]:
                encoded = hash_password(password, candidate)

                assert verify_password(password, encoded)

    def test_wrong_password(self):
        encoded = hash_password(b"password", FAST)

        assert verify_password(b"password1", encoded) is False
        assert verify_password(b"Password", encoded) is False

    def test_fresh_salt(self):
        encoded_1 = hash_password(b"password", FAST)
        encoded_2 = hash_password(b"password", FAST)

        assert encoded_1 != encoded_2
        assert decode_hash(encoded_1).salt != decode_hash(encoded_2).salt

    def test_lengths_follow_parameters(self):
        decoded = decode_hash(hash_password(b"password", OTHER))

        assert len(decoded.salt) == 24
        assert len(decoded.key) == 48

    def test_explicit_parameters_are_normalized(self):
        encoded = hash_password(b"password", Argon2Parameters(memory_kib=1024, iterations=0, parallelism=1,
                                                              salt_length=0, key_length=0))

        assert decode_hash(encoded).parameters == Argon2Parameters(1024, 1, 1, 16, 32)

    def test_parallelism_out_of_range(self):
        with self.assertRaises(ValueError):
            hash_password(b"password", Argon2Parameters(memory_kib=8 * 256, parallelism=256))

    def test_parameters_below_primitive_minimum(self):
        for candidate in [Argon2Parameters(1024, 1, 1, 4, 32),
                          Argon2Parameters(1024, 1, 1, 7, 32),
                          Argon2Parameters(1024, 1, 1, 16, 3),
                          Argon2Parameters(8, 1, 2, 16, 32)]:
            with self.assertRaises(ValueError) as cm:
                hash_password(b"password", candidate)

            assert not isinstance(cm.exception, DerivationError)

    def test_random_source_failure(self):
        with mock.patch("argon.os.urandom", side_effect=OSError("no entropy")):
            with self.assertRaises(RandomSourceError):
                hash_password(b"password", FAST)

    def test_verified_by_argon2_cffi(self):
        encoded = hash_password("password", FAST)

        assert argon2.PasswordHasher().verify(encoded, "password")

    def test_verifies_argon2_cffi_hash(self):
        ph = argon2.PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, hash_len=32, salt_len=16,
                                   type=argon2.low_level.Type.ID)
        encoded = ph.hash("password")

        assert verify_password("password", encoded)
        assert not verify_password("wrong", encoded)


class VerifyTest(unittest.TestCase):
    def setUp(self):
        self.encoded = hash_password(b"password", FAST)

    def tearDown(self):
        params.reset_configuration()

    def test_version_gate(self):
        for version in ["16", "18", "20", "190", "-19", "0", "4294967295"]:
            encoded = self.encoded.replace("$v=19$", f"$v={version}$")

            with self.assertRaises(VersionError) as cm:
                verify_password(b"password", encoded)

            assert cm.exception.expected == 19
            assert cm.exception.got == int(version)
            assert str(cm.exception) == f"incorrect argon2 version. expected 19, got {version}"

    def test_unparsable_version(self):
        for segment in ["v=", "v=abc", "19", "v=19x", "v=--19", "v=12345678901", "v=" + "1" * 5000]:
            encoded = self.encoded.replace("$v=19$", f"${segment}$")

            with self.assertRaises(FormatError):
                verify_password(b"password", encoded)

    def test_field_count(self):
        vals = self.encoded.split("$")

        for encoded in ["$".join(vals[:5]), "$".join(vals + ["extra"]), "", "argon2id", self.encoded[1:]]:
            with self.assertRaises(FormatError) as cm:
                verify_password(b"password", encoded)
            assert "not in the correct format" in str(cm.exception)

    def test_identifier(self):
        for identifier in ["argon2i", "argon2d", "ARGON2ID"]:
            with self.assertRaises(FormatError):
                verify_password(b"password", self.encoded.replace("$argon2id$", f"${identifier}$"))

    def test_unparsable_parameters(self):
        for segment in ["m=1024,t=1", "t=1,m=1024,p=1", "m=1024,t=1,p=1,", "m=x,t=1,p=1",
                        "m=0,t=1,p=1", "m=1024,t=0,p=1", "m=1024,t=1,p=0",
                        "m=4294967296,t=1,p=1", "m=1024,t=4294967296,p=1", "m=1024,t=1,p=256",
                        "m=12345678901,t=1,p=1", "m=" + "1" * 5000 + ",t=1,p=1", "m=1024,t=1,p=" + "1" * 5000]:
            encoded = self.encoded.replace("$m=1024,t=1,p=1$", f"${segment}$")

            with self.assertRaises(FormatError):
                verify_password(b"password", encoded)

    def test_invalid_base64(self):
        vals = self.encoded.split("$")

        for salt in ["!" + vals[4][1:], vals[4] + "==", vals[4][:21] + "-", vals[4][:21], vals[4][:-1] + " "]:
            encoded = "$".join(vals[:4] + [salt, vals[5]])

            with self.assertRaises(DecodeError):
                verify_password(b"password", encoded)

        with self.assertRaises(DecodeError):
            verify_password(b"password", "$".join(vals[:5] + [vals[5] + "="]))

    def test_non_canonical_base64(self):
        vals = self.encoded.split("$")
        # 16 salt bytes leave 4 zero bits in the last character
        last = B64_ALPHABET.index(vals[4][-1])
        salt = vals[4][:-1] + B64_ALPHABET[last + 1]

        with self.assertRaises(DecodeError):
            verify_password(b"password", "$".join(vals[:4] + [salt, vals[5]]))

    def test_empty_segments(self):
        vals = self.encoded.split("$")

        with self.assertRaises(DecodeError):
            verify_password(b"password", "$".join(vals[:4] + ["", vals[5]]))
        with self.assertRaises(DecodeError):
            verify_password(b"password", "$".join(vals[:5] + [""]))

    def test_short_salt(self):
        encoded = encode_hash(b"salt", b"\0" * 32, FAST)

        with self.assertRaises(FormatError):
            verify_password(b"password", encoded)

    def test_short_key(self):
        encoded = encode_hash(b"saltsalt", b"\0" * 3, FAST)

        with self.assertRaises(FormatError):
            verify_password(b"password", encoded)

    def test_memory_below_lanes(self):
        for segment in ["m=8,t=1,p=2", "m=31,t=1,p=4", "m=1,t=1,p=1"]:
            encoded = self.encoded.replace("$m=1024,t=1,p=1$", f"${segment}$")

            with self.assertRaises(FormatError):
                verify_password(b"password", encoded)

    def test_smallest_accepted_values(self):
        encoded = hash_password(b"password", Argon2Parameters(memory_kib=16, iterations=1, parallelism=2,
                                                              salt_length=8, key_length=4))

        assert verify_password(b"password", encoded)
        assert not verify_password(b"wrong", encoded)

    def test_tamper(self):
        vals = self.encoded.split("$")

        for field in [4, 5]:
            for i, c in enumerate(vals[field]):
                tampered = list(vals)
                replacement = B64_ALPHABET[(B64_ALPHABET.index(c) + 1) % 64]
                tampered[field] = vals[field][:i] + replacement + vals[field][i + 1:]

                try:
                    result = verify_password(b"password", "$".join(tampered))
                except DecodeError:
                    continue

                assert result is False

    def test_configuration_untouched(self):
        params.set_configuration(OTHER)

        assert verify_password(b"password", self.encoded)
        assert params.current_configuration() == OTHER

    def test_decode_hash(self):
        decoded = decode_hash(self.encoded)

        assert decoded.version == 19
        assert decoded.parameters == FAST
        assert encode_hash(decoded.salt, decoded.key, decoded.parameters) == self.encoded


class NeedsRehashTest(unittest.TestCase):
    def tearDown(self):
        params.reset_configuration()

    def test_same_parameters(self):
        encoded = hash_password(b"password", FAST)

        assert not needs_rehash(encoded, FAST)

    def test_changed_parameters(self):
        encoded = hash_password(b"password", FAST)

        assert needs_rehash(encoded, OTHER)
        assert needs_rehash(encoded, Argon2Parameters(1024, 1, 1, 16, 64))

    def test_process_wide_configuration(self):
        encoded = hash_password(b"password", FAST)

        params.set_configuration(FAST)
        assert not needs_rehash(encoded)

        params.reset_configuration()
        assert needs_rehash(encoded)

    def test_invalid_hash(self):
        with self.assertRaises(FormatError):
            needs_rehash("$argon2id$v=19$m=1024,t=1,p=1$", FAST)


class ConcurrencyTest(unittest.TestCase):
    def tearDown(self):
        params.reset_configuration()

    def test_concurrent_hash_and_verify(self):
        passwords = [f"password-{i}".encode() for i in range(16)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            hashes = list(pool.map(lambda p: hash_password(p, FAST), passwords))
            matches = list(pool.map(verify_password, passwords, hashes))
            mismatches = list(pool.map(verify_password, passwords, hashes[1:] + hashes[:1]))

        assert all(matches)
        assert not any(mismatches)

    def test_hash_during_reconfiguration(self):
        stop = threading.Event()

        def writer():
            i = 0
            while not stop.is_set():
                params.set_configuration(OTHER if i % 2 else FAST)
                i += 1

        t = threading.Thread(target=writer)
        t.start()
        try:
            with ThreadPoolExecutor(max_workers=4) as pool:
                hashes = list(pool.map(lambda i: hash_password(b"password"), range(20)))
        finally:
            stop.set()
            t.join()

        for encoded in hashes:
            assert decode_hash(encoded).parameters in (FAST, OTHER)
            assert verify_password(b"password", encoded)


class BenchmarkTest(unittest.TestCase):
    def test_bench(self):
        res = benchmark.bench(repeats=1, t=1, p=1, tau=16, m_range=[8, 16, 32])

        assert res.shape == (3,)
        assert (res > 0).all()

    def test_bench_requires_one_range(self):
        with self.assertRaises(ValueError):
            benchmark.bench(repeats=1, m=8)
        with self.assertRaises(ValueError):
            benchmark.bench(repeats=1, m_range=[8], t_range=[1])

    def test_summarize(self):
        summary = benchmark.summarize([1.0, 2.0, 3.0, 4.0])

        assert summary["mean"] == 2.5
        assert summary["median"] == 2.5
        assert summary["min"] == 1.0
        assert summary["max"] == 4.0
        assert 3.0 < summary["p95"] <= 4.0

    def test_calibrate_generous_budget(self):
        result = benchmark.calibrate(60.0, parallelism=1, start_memory_kib=64, max_memory_kib=256, repeats=1)

        assert result == Argon2Parameters(memory_kib=256, iterations=1, parallelism=1, salt_length=16, key_length=32)

    def test_calibrate_tiny_budget(self):
        result = benchmark.calibrate(0.0, parallelism=1, start_memory_kib=64, max_memory_kib=256, repeats=1)

        assert result.memory_kib == 64

    def test_plot(self):
        with tempfile.TemporaryDirectory() as output_dir:
            path = benchmark.plot_time_results([[1, 2, 3]], [[0.1, 0.2, 0.3]], ["p=1"], "t", "test", output_dir)

            assert os.path.isfile(path)
            assert path.endswith(".png")


if __name__ == '__main__':
    unittest.main()
