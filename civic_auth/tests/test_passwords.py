from __future__ import annotations

import unittest

from civic_auth.utils.passwords import (
    HashingError,
    generate_secure_token,
    hash_password,
    hash_security_answer,
    verify_password,
    verify_security_answer,
)


class PasswordHashingTests(unittest.TestCase):
    def test_hash_is_salted_and_verifies(self) -> None:
        first = hash_password("Abcdef12")
        second = hash_password("Abcdef12")
        self.assertNotEqual(first, second)
        self.assertNotIn("Abcdef12", first)
        self.assertTrue(verify_password("Abcdef12", first))
        self.assertTrue(verify_password("Abcdef12", second))
        self.assertFalse(verify_password("abcdef12", first))

    def test_malformed_hash_raises(self) -> None:
        with self.assertRaises(HashingError):
            verify_password("Abcdef12", "not-a-hash")

    def test_empty_inputs_raise(self) -> None:
        with self.assertRaises(HashingError):
            hash_password("")
        with self.assertRaises(HashingError):
            verify_password("Abcdef12", "")

    def test_security_answer_is_normalized(self) -> None:
        stored = hash_security_answer("  Fluffy ")
        self.assertTrue(verify_security_answer("fluffy", stored))
        self.assertTrue(verify_security_answer("FLUFFY", stored))
        self.assertFalse(verify_security_answer("fluff", stored))


class SecureTokenTests(unittest.TestCase):
    def test_token_is_fixed_length_hex(self) -> None:
        token = generate_secure_token()
        self.assertEqual(len(token), 64)
        int(token, 16)

    def test_tokens_do_not_repeat(self) -> None:
        tokens = {generate_secure_token() for _ in range(200)}
        self.assertEqual(len(tokens), 200)


if __name__ == "__main__":
    unittest.main()
