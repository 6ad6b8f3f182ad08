"""Round-robin selection over the API credential pool."""

from typing import Sequence

from pydantic import SecretStr

from deep_research.exceptions import InvalidRequestError


class CredentialSelector:
    """Hands out credentials in order, wrapping around at the end of the pool.

    One selector is created per run and shared by every generation call of
    that run. Selection happens between awaits, so concurrent callers on the
    event loop never observe a half-advanced index.
    """

    def __init__(self, credentials: Sequence[str | SecretStr]) -> None:
        pool = [c.get_secret_value() if isinstance(c, SecretStr) else c for c in credentials]
        pool = [c.strip() for c in pool if c and c.strip()]
        if not pool:
            raise InvalidRequestError("no API credentials configured")
        self._pool = pool
        self._index = 0

    def __len__(self) -> int:
        return len(self._pool)

    def next(self) -> str:
        credential = self._pool[self._index]
        self._index = (self._index + 1) % len(self._pool)
        return credential

    @property
    def position(self) -> int:
        """Index of the credential the next call will receive."""
        return self._index
