"""Tests for bootstrap service."""

from unittest.mock import MagicMock, patch

from shared.security import verify_api_key
from webhook_ca.services.bootstrap import API_KEY_BANNER, bootstrap_operator_key


class TestBootstrapOperatorKey:
    """Tests for bootstrap_operator_key."""

    def test_configured_hash_is_used(self):
        """Test that a configured hash is returned without generating a key."""
        settings = MagicMock()
        settings.OPERATOR_API_KEY_HASH = "$argon2id$configured"

        with patch("webhook_ca.services.bootstrap.generate_api_key") as mock_gen_key:
            result = bootstrap_operator_key(settings)

        assert result == "$argon2id$configured"
        mock_gen_key.assert_not_called()

    def test_generates_key_when_unset(self, capsys):
        """Test that a fresh key is printed once and its hash returned."""
        settings = MagicMock()
        settings.OPERATOR_API_KEY_HASH = None

        with patch("webhook_ca.services.bootstrap.generate_api_key") as mock_gen_key:
            mock_gen_key.return_value = "wca_test_key_12345"
            result = bootstrap_operator_key(settings)

        output = capsys.readouterr().out
        assert "wca_test_key_12345" in output
        assert output.count(API_KEY_BANNER) == 2
        assert verify_api_key("wca_test_key_12345", result) is True

    def test_empty_hash_counts_as_unset(self, capsys):
        """Test that an empty OPERATOR_API_KEY_HASH still bootstraps a key."""
        settings = MagicMock()
        settings.OPERATOR_API_KEY_HASH = ""

        result = bootstrap_operator_key(settings)

        assert result.startswith("$argon2")
        assert "BOOTSTRAP OPERATOR API KEY" in capsys.readouterr().out
