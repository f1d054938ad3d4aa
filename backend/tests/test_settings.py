from game.settings import decrypt_secret, encrypt_secret, mask_keys, merge_api_keys
from irtypes.settings import MASKED_KEY


def test_secret_survives_encryption():
    stored = encrypt_secret("sk-test-123")
    assert "sk-test-123" not in stored
    assert decrypt_secret(stored) == "sk-test-123"


def test_each_encryption_uses_a_fresh_salt():
    assert encrypt_secret("same") != encrypt_secret("same")


def test_empty_and_corrupt_secrets_decrypt_to_empty():
    assert encrypt_secret("") == ""
    assert decrypt_secret("") == ""
    assert decrypt_secret("00ff.not-a-token") == ""
    assert decrypt_secret("zz.also-broken") == ""


def test_mask_keys_hides_only_present_keys():
    assert mask_keys({"openai": "enc", "anthropic": ""}) == {"openai": MASKED_KEY, "anthropic": ""}


def test_masked_values_leave_keys_untouched():
    merged = merge_api_keys(
        {"openai": "old-openai", "google": "old-google"},
        {"openai": MASKED_KEY, "google": "new-google", "anthropic": None, "openrouter": ""},
    )
    assert merged == {"openai": "old-openai", "google": "new-google", "openrouter": ""}
