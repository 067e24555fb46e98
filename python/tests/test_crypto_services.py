"""
Tests for field encryption, password hashing and TOTP verification.
"""

import base64
import time

import pyotp
import pytest

from config_manager import ConfigurationError
from services.encryption import EncryptionService
from services.exceptions import EncryptionError
from services.password_hasher import PasswordHasher
from services.totp import TotpService


class TestEncryptionService:
    """Deterministic AES field encryption"""

    def test_round_trip(self, encryption):
        """Decrypting the ciphertext gives the original text"""
        ciphertext = encryption.encrypt("Ivan Petrenko")
        assert ciphertext != "Ivan Petrenko"
        assert encryption.decrypt(ciphertext) == "Ivan Petrenko"

    def test_unicode_round_trip(self, encryption):
        text = "Іван Петренко – ñ 漢字"
        assert encryption.decrypt(encryption.encrypt(text)) == text

    def test_encryption_is_deterministic(self, encryption):
        """Equal plaintexts give equal ciphertexts"""
        assert encryption.encrypt("same") == encryption.encrypt("same")

    def test_ciphertext_is_block_aligned_base64(self, encryption):
        raw = base64.b64decode(encryption.encrypt("x" * 16))
        # 16 bytes of data plus a full block of PKCS7 padding
        assert len(raw) == 32

    def test_empty_input_gives_empty_output(self, encryption):
        assert encryption.encrypt("") == ""
        assert encryption.encrypt(None) == ""
        assert encryption.decrypt("") == ""
        assert encryption.decrypt(None) == ""

    def test_different_keys_give_different_ciphertexts(self, encryption):
        other = EncryptionService("another-key")
        assert other.encrypt("secret") != encryption.encrypt("secret")

    def test_wrong_key_fails_or_differs(self, encryption):
        """Decrypting with another key never returns the plaintext"""
        ciphertext = encryption.encrypt("secret value")
        other = EncryptionService("another-key")
        try:
            assert other.decrypt(ciphertext) != "secret value"
        except EncryptionError:
            pass

    def test_invalid_base64_raises(self, encryption):
        with pytest.raises(EncryptionError):
            encryption.decrypt("not base64 at all!!")

    def test_unaligned_ciphertext_raises(self, encryption):
        with pytest.raises(EncryptionError):
            encryption.decrypt(base64.b64encode(b"short").decode())

    def test_missing_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            EncryptionService("")


class TestPasswordHasher:
    """BCrypt password hashing"""

    def test_hash_and_verify(self, hasher):
        hashed = hasher.hash_password("CorrectHorse1")
        assert hashed.startswith("$2")
        assert hasher.verify_password("CorrectHorse1", hashed)

    def test_wrong_password_rejected(self, hasher):
        hashed = hasher.hash_password("CorrectHorse1")
        assert not hasher.verify_password("WrongHorse1", hashed)

    def test_hashes_are_salted(self, hasher):
        assert hasher.hash_password("same") != hasher.hash_password("same")

    def test_work_factor_is_applied(self):
        hashed = PasswordHasher(rounds=5).hash_password("pw")
        assert hashed.split("$")[2] == "05"

    def test_empty_password_cannot_be_hashed(self, hasher):
        with pytest.raises(ValueError):
            hasher.hash_password("")

    def test_malformed_hash_never_matches(self, hasher):
        assert not hasher.verify_password("anything", "not-a-bcrypt-hash")
        assert not hasher.verify_password("anything", "")
        assert not hasher.verify_password("", hasher.hash_password("x"))


class TestTotpService:
    """RFC 6238 TOTP"""

    @pytest.fixture
    def totp(self):
        return TotpService(issuer="KURATOR")

    def test_secret_is_base32(self, totp):
        secret = totp.generate_secret()
        assert len(secret) == 32
        base64.b32decode(secret)

    def test_secrets_are_random(self, totp):
        assert totp.generate_secret() != totp.generate_secret()

    def test_current_code_verifies(self, totp):
        secret = totp.generate_secret()
        assert totp.verify_code(secret, pyotp.TOTP(secret).now())

    def test_code_with_spaces_verifies(self, totp):
        secret = totp.generate_secret()
        code = pyotp.TOTP(secret).now()
        assert totp.verify_code(secret, f" {code[:3]} {code[3:]} ")

    def test_previous_step_within_window(self, totp):
        secret = totp.generate_secret()
        generator = pyotp.TOTP(secret)
        previous = generator.at(int(time.time()), counter_offset=-1)
        assert totp.verify_code(secret, previous)

    def test_code_outside_window_rejected(self):
        strict = TotpService(valid_window=0)
        secret = strict.generate_secret()
        generator = pyotp.TOTP(secret)
        old = generator.at(1_000_000)
        if old != generator.now():
            assert not strict.verify_code(secret, old)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12 34 5a"])
    def test_malformed_codes_rejected(self, totp, code):
        assert not totp.verify_code(totp.generate_secret(), code)

    def test_missing_secret_rejected(self, totp):
        assert not totp.verify_code("", "123456")
        assert not totp.verify_code(None, "123456")

    def test_qr_code_uri(self, totp):
        uri = totp.generate_qr_code_uri("JBSWY3DPEHPK3PXP", "ivan petrenko")
        assert uri.startswith("otpauth://totp/KURATOR:ivan%20petrenko?")
        assert "secret=JBSWY3DPEHPK3PXP" in uri
        assert "issuer=KURATOR" in uri
        assert "digits=6" in uri
        assert "period=30" in uri

    def test_eight_digit_codes(self):
        totp = TotpService(digits=8)
        secret = totp.generate_secret()
        assert totp.verify_code(secret, pyotp.TOTP(secret, digits=8).now())
        assert not totp.verify_code(secret, pyotp.TOTP(secret).now())
