from app.core.security import sign_channel_token, verify_channel_token


class TestChannelToken:
    def test_signed_token_verifies(self):
        token = sign_channel_token("chan-1", "user-123")
        assert token.startswith("user-123.")
        assert verify_channel_token(token, "chan-1", "user-123")

    def test_token_bound_to_channel(self):
        token = sign_channel_token("chan-1", "user-123")
        assert not verify_channel_token(token, "chan-2", "user-123")

    def test_token_bound_to_user(self):
        token = sign_channel_token("chan-1", "user-123")
        assert not verify_channel_token(token, "chan-1", "user-456")

    def test_missing_or_malformed_token_rejected(self):
        assert not verify_channel_token(None, "chan-1", "user-123")
        assert not verify_channel_token("", "chan-1", "user-123")
        assert not verify_channel_token("no-signature", "chan-1", "user-123")
        assert not verify_channel_token("user-123.deadbeef", "chan-1", "user-123")
