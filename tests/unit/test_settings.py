import pytest
from pydantic import ValidationError

from app.core.config import Settings


class TestSecretKey:
    def test_missing_secret_key_rejected_when_tokens_required(self):
        with pytest.raises(ValidationError, match="SECRET_KEY"):
            Settings(_env_file=None, SECRET_KEY="", WEBHOOK_REQUIRE_TOKEN=True)

    def test_configured_secret_key_kept(self):
        settings = Settings(_env_file=None, SECRET_KEY="shared-key", WEBHOOK_REQUIRE_TOKEN=True)
        assert settings.SECRET_KEY == "shared-key"

    def test_random_key_when_tokens_not_required(self):
        settings = Settings(_env_file=None, SECRET_KEY="", WEBHOOK_REQUIRE_TOKEN=False)
        assert len(settings.SECRET_KEY) >= 32
