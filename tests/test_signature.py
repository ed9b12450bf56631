import inspect
import unittest

import support  # noqa: F401

import utils
from utils import sign_body, verify_signature

SECRET = "It's a Secret to Everybody"
BODY = b"Hello, World!"
# Example from the GitHub docs for validating webhook deliveries
GITHUB_SIGNATURE = "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"


class VerifySignatureTests(unittest.TestCase):
    def test_accepts_documented_github_signature(self):
        self.assertTrue(verify_signature(BODY, GITHUB_SIGNATURE, SECRET))

    def test_sign_body_matches_github(self):
        self.assertEqual(sign_body(BODY, SECRET), GITHUB_SIGNATURE)

    def test_uppercase_hex_is_accepted(self):
        scheme, digest = GITHUB_SIGNATURE.split("=")
        self.assertTrue(verify_signature(BODY, f"{scheme}={digest.upper()}", SECRET))

    def test_single_bit_flip_in_body_fails(self):
        for index in (0, len(BODY) // 2, len(BODY) - 1):
            mutated = bytearray(BODY)
            mutated[index] ^= 0x01
            self.assertFalse(verify_signature(bytes(mutated), GITHUB_SIGNATURE, SECRET))

    def test_single_bit_flip_in_signature_fails(self):
        digest = bytearray(bytes.fromhex(GITHUB_SIGNATURE[len("sha256="):]))
        for index in (0, 16, 31):
            mutated = bytearray(digest)
            mutated[index] ^= 0x80
            self.assertFalse(verify_signature(BODY, "sha256=" + mutated.hex(), SECRET))

    def test_wrong_secret_fails(self):
        self.assertFalse(verify_signature(BODY, GITHUB_SIGNATURE, "not the secret"))

    def test_missing_header_fails(self):
        self.assertFalse(verify_signature(BODY, None, SECRET))
        self.assertFalse(verify_signature(BODY, "", SECRET))

    def test_other_schemes_fail(self):
        digest = GITHUB_SIGNATURE.split("=")[1]
        self.assertFalse(verify_signature(BODY, f"sha1={digest}", SECRET))
        self.assertFalse(verify_signature(BODY, digest, SECRET))

    def test_malformed_hex_fails_without_raising(self):
        self.assertFalse(verify_signature(BODY, "sha256=" + "zz" * 32, SECRET))
        self.assertFalse(verify_signature(BODY, "sha256=abc", SECRET))
        self.assertFalse(verify_signature(BODY, GITHUB_SIGNATURE + "00", SECRET))
        self.assertFalse(verify_signature(BODY, "sha256=" + "é" * 64, SECRET))

    def test_uncaptured_body_fails(self):
        self.assertFalse(verify_signature(None, GITHUB_SIGNATURE, SECRET))

    def test_signature_is_over_raw_bytes(self):
        # Same JSON document, different whitespace: different signature
        raw = b'{"zen": "Keep it logically awesome."}'
        reserialized = b'{"zen":"Keep it logically awesome."}'
        self.assertFalse(verify_signature(reserialized, sign_body(raw, SECRET), SECRET))

    def test_comparison_uses_constant_time_primitive(self):
        source = inspect.getsource(utils.verify_signature)
        self.assertIn("hmac.compare_digest", source)
        self.assertNotIn("==", source.split("hmac.new", 1)[1].split("compare_digest", 1)[0])


if __name__ == "__main__":
    unittest.main()
