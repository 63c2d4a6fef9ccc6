"""Abstract base class for authority credential providers.

Token acquisition, refresh and encrypted storage belong to an external
collaborator.  The resolver only asks it for request headers right
before calling an authority that needs authentication.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ICredentialProvider(ABC):
    """Contract for supplying authenticated HTTP access per authority."""

    @abstractmethod
    async def get_headers(self, authority: str) -> dict[str, str]:
        """Return the headers to attach to a request for *authority*.

        Parameters
        ----------
        authority:
            Authority name, e.g. ``"spotify"``.

        Returns
        -------
        dict[str, str]
            Typically ``{"Authorization": "Bearer ..."}``; empty when no
            credential is held for *authority*.
        """


class StaticCredentialProvider(ICredentialProvider):
    """Credential provider backed by a fixed token map.

    Used for local runs and tests where a bearer token is supplied
    through settings instead of an OAuth vault.
    """

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self._tokens = {k: v for k, v in (tokens or {}).items() if v}

    async def get_headers(self, authority: str) -> dict[str, str]:
        token = self._tokens.get(authority)
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def has_credentials(self, authority: str) -> bool:
        return authority in self._tokens
