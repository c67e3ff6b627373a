"""Unit tests for credential providers and wipeable secrets."""

from unittest.mock import patch

import pytest

from vcd_migrate.credentials import (
    DefaultPasswordProvider,
    EnvironmentCredentialProvider,
    InteractiveCredentialProvider,
    MappingCredentialProvider,
    Secret,
    wipe_buffer,
)
from vcd_migrate.exceptions import NotFoundError

PLACEHOLDER = "__password__"


class TestSecret:
    """Test secret buffers."""

    def test_reveal_and_wipe(self):
        """Test that wiping zeroes the buffer."""
        secret = Secret("hunter2")
        assert secret.reveal() == "hunter2"
        assert not secret.is_wiped

        secret.wipe()

        assert secret.is_wiped
        assert "hunter2" not in repr(secret)

    def test_context_manager_wipes(self):
        """Test that leaving the context wipes the secret."""
        with Secret("hunter2") as secret:
            pass
        assert secret.is_wiped

    def test_splice_escapes_xml(self):
        """Test that the secret is XML-escaped into the template."""
        secret = Secret("a&b<c>")

        payload = secret.splice_into(f"<Password>{PLACEHOLDER}</Password>", PLACEHOLDER)

        assert isinstance(payload, bytearray)
        assert bytes(payload) == b"<Password>a&amp;b&lt;c&gt;</Password>"
        assert secret.reveal() == "a&b<c>"

    def test_splice_requires_placeholder(self):
        """Test that a template without the placeholder is refused."""
        with pytest.raises(ValueError, match="placeholder"):
            Secret("x").splice_into("<Password/>", PLACEHOLDER)

    def test_wipe_buffer(self):
        """Test that a request buffer can be zeroed in place."""
        buffer = bytearray(b"secret")
        wipe_buffer(buffer)
        assert buffer == bytearray(6)


class TestProviders:
    """Test the credential provider variants."""

    def test_default_password_provider(self):
        """Test that every user gets an independent copy of the default."""
        provider = DefaultPasswordProvider("Welcome1!")

        first = provider.user_password("alice")
        first.wipe()

        assert provider.user_password("bob").reveal() == "Welcome1!"

    def test_default_provider_delegates_endpoints(self):
        """Test that endpoint passwords come from the fallback provider."""
        fallback = MappingCredentialProvider(endpoints={"vcd": "pw"})
        provider = DefaultPasswordProvider("Welcome1!", fallback=fallback)

        assert provider.endpoint_password("vcd", "admin@System").reveal() == "pw"
        with pytest.raises(NotFoundError):
            DefaultPasswordProvider("x").endpoint_password("vcd", "admin@System")

    def test_mapping_provider(self):
        """Test canned answers and missing entries."""
        provider = MappingCredentialProvider(users={"alice": "pw"})

        assert provider.user_password("alice").reveal() == "pw"
        with pytest.raises(NotFoundError, match="bob"):
            provider.user_password("bob")

    def test_environment_provider(self):
        """Test per-user, default and per-host variables."""
        provider = EnvironmentCredentialProvider(
            {
                "VCD_USER_PASSWORD_JOHN_DOE": "john-pw",
                "VCD_DEFAULT_USER_PASSWORD": "default-pw",
                "VCD_PASSWORD_VCD_EXAMPLE_COM": "host-pw",
            }
        )

        assert provider.user_password("john.doe").reveal() == "john-pw"
        assert provider.user_password("alice").reveal() == "default-pw"
        assert provider.endpoint_password("vcd.example.com", "a@System").reveal() == "host-pw"

    def test_environment_provider_missing(self):
        """Test that a missing variable raises NotFoundError."""
        provider = EnvironmentCredentialProvider({})

        with pytest.raises(NotFoundError):
            provider.user_password("alice")
        with pytest.raises(NotFoundError):
            provider.endpoint_password("vcd", "a@System")

    def test_interactive_provider_prompts_hidden(self):
        """Test that prompts hide input and confirm user passwords."""
        with patch("vcd_migrate.credentials.typer.prompt", return_value="typed") as prompt:
            secret = InteractiveCredentialProvider().user_password("alice")

        assert secret.reveal() == "typed"
        _, kwargs = prompt.call_args
        assert kwargs["hide_input"] is True
        assert kwargs["confirmation_prompt"] is True
