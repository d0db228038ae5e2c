from ruwwad.auth.passwords import hash_password, verify_password


def test_hash_password_round_trip() -> None:
    hashed = hash_password('secret123')

    assert hashed != 'secret123'
    assert verify_password('secret123', hashed) is True
    assert verify_password('secret124', hashed) is False


def test_passwords_longer_than_72_bytes_compare_on_prefix() -> None:
    hashed = hash_password('a' * 80)

    assert verify_password('a' * 72 + 'different', hashed) is True


def test_verify_password_rejects_missing_values() -> None:
    assert verify_password('', hash_password('secret123')) is False
    assert verify_password('secret123', '') is False
    assert verify_password('secret123', None) is False


def test_verify_password_rejects_malformed_hash() -> None:
    assert verify_password('secret123', 'not-a-bcrypt-hash') is False
