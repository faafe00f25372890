"""Tests for credential encryption at rest."""

from __future__ import annotations

import pytest

from controlplane.services.crypto_service import decrypt_credentials, encrypt_credentials


class TestCryptoService:
    def test_encrypt_decrypt_roundtrip(self) -> None:
        secret = "my-app-secret"
        credentials = {"access_token": "ya29.token"}
        ciphertext = encrypt_credentials(credentials, secret)
        assert "ya29.token" not in ciphertext
        assert decrypt_credentials(ciphertext, secret) == credentials

    def test_decrypt_with_wrong_key_raises(self) -> None:
        ciphertext = encrypt_credentials({"access_token": "t"}, "correct-key")
        with pytest.raises(ValueError, match="Failed to decrypt"):
            decrypt_credentials(ciphertext, "wrong-key")

    def test_decrypt_garbage_raises(self) -> None:
        with pytest.raises(ValueError, match="Failed to decrypt"):
            decrypt_credentials("not-valid-ciphertext", "any-key")

    def test_ciphertexts_differ_for_same_input(self) -> None:
        first = encrypt_credentials({"access_token": "t"}, "same-key")
        second = encrypt_credentials({"access_token": "t"}, "same-key")
        assert first != second
        assert decrypt_credentials(first, "same-key") == decrypt_credentials(second, "same-key")
