"""Credential providers for endpoint logins and migrated user passwords.

The orchestrator never prompts on its own: it asks the injected
``CredentialProvider``. Headless runs and tests supply a default password or
a mapping; interactive runs prompt on the terminal.
"""

import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping

import structlog
import typer

from vcd_migrate.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


class Secret:
    """A password held in a mutable buffer that can be zeroed after use."""

    __slots__ = ("_buffer",)

    def __init__(self, value: str) -> None:
        self._buffer = bytearray(value.encode("utf-8"))

    def __enter__(self) -> "Secret":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "Secret('********')"

    @property
    def is_wiped(self) -> bool:
        return not any(self._buffer)

    def reveal(self) -> str:
        return self._buffer.decode("utf-8")

    def splice_into(self, template: str, placeholder: str) -> bytearray:
        """Encode ``template`` with ``placeholder`` replaced by the XML-escaped secret.

        Returns a mutable buffer so the caller can zero it after transmission.
        """
        head, sep, tail = template.partition(placeholder)
        if not sep:
            raise ValueError("Password placeholder not found in document")
        escaped = (
            self._buffer.replace(b"&", b"&amp;")
            .replace(b"<", b"&lt;")
            .replace(b">", b"&gt;")
        )
        payload = bytearray(head.encode("utf-8"))
        payload += escaped
        payload += tail.encode("utf-8")
        escaped[:] = bytes(len(escaped))
        return payload

    def wipe(self) -> None:
        self._buffer[:] = bytes(len(self._buffer))


def wipe_buffer(buffer: bytearray) -> None:
    buffer[:] = bytes(len(buffer))


class CredentialProvider(ABC):
    """Source of passwords for endpoint logins and migrated users."""

    @abstractmethod
    def user_password(self, user_name: str) -> Secret:
        """Password to set on a migrated user."""

    def endpoint_password(self, host: str, login: str) -> Secret:
        """Password for logging in to an endpoint."""
        raise NotFoundError(f"No password available for {login} at {host}")


class DefaultPasswordProvider(CredentialProvider):
    """Gives every migrated user the same operator-supplied password."""

    def __init__(self, default_password: str, fallback: CredentialProvider | None = None):
        self._default = Secret(default_password)
        self._fallback = fallback

    def user_password(self, user_name: str) -> Secret:
        return Secret(self._default.reveal())

    def endpoint_password(self, host: str, login: str) -> Secret:
        if self._fallback is not None:
            return self._fallback.endpoint_password(host, login)
        return super().endpoint_password(host, login)


class InteractiveCredentialProvider(CredentialProvider):
    """Prompts on the terminal with hidden input."""

    def user_password(self, user_name: str) -> Secret:
        value = typer.prompt(
            f"Password for migrated user '{user_name}'",
            hide_input=True,
            confirmation_prompt=True,
        )
        return Secret(value)

    def endpoint_password(self, host: str, login: str) -> Secret:
        return Secret(typer.prompt(f"Password for {login} at {host}", hide_input=True))


class EnvironmentCredentialProvider(CredentialProvider):
    """Reads passwords from the environment (or a ``.env`` file).

    Users: ``VCD_USER_PASSWORD_<NAME>`` then ``VCD_DEFAULT_USER_PASSWORD``.
    Endpoints: ``VCD_PASSWORD_<HOST>``.
    Names are upper-cased with non-alphanumerics replaced by ``_``.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    @staticmethod
    def _key(prefix: str, name: str) -> str:
        return f"{prefix}_{re.sub(r'[^A-Za-z0-9]', '_', name).upper()}"

    def user_password(self, user_name: str) -> Secret:
        value = self._environ.get(self._key("VCD_USER_PASSWORD", user_name))
        if value is None:
            logger.debug("No per-user password stored, using the default", user=user_name)
            value = self._environ.get("VCD_DEFAULT_USER_PASSWORD")
        if value is None:
            raise NotFoundError(f"No password stored for user '{user_name}'")
        return Secret(value)

    def endpoint_password(self, host: str, login: str) -> Secret:
        value = self._environ.get(self._key("VCD_PASSWORD", host))
        if value is None:
            return super().endpoint_password(host, login)
        return Secret(value)


class MappingCredentialProvider(CredentialProvider):
    """Canned answers keyed by user name or host, for headless runs."""

    def __init__(
        self,
        users: Mapping[str, str] | None = None,
        endpoints: Mapping[str, str] | None = None,
    ) -> None:
        self._users = dict(users or {})
        self._endpoints = dict(endpoints or {})

    def user_password(self, user_name: str) -> Secret:
        if user_name not in self._users:
            raise NotFoundError(f"No password configured for user '{user_name}'")
        return Secret(self._users[user_name])

    def endpoint_password(self, host: str, login: str) -> Secret:
        if host not in self._endpoints:
            return super().endpoint_password(host, login)
        return Secret(self._endpoints[host])
