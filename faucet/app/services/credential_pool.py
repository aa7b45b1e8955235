"""Round-robin pool of shared upstream credentials.

The credential list is fixed for the process lifetime; the rotation cursor
lives in the state store so every instance rotates through the same sequence.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from faucet.app.core.logging import get_logger
from faucet.app.core.store import StateStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class PooledCredential:
    """A credential together with its position in the pool."""
    index: int
    api_key: str = field(repr=False)


class CredentialPool:
    """Ordered credentials plus a persisted round-robin cursor.

    Usage:
        pool = CredentialPool(settings.circle_api_keys, store, "faucet:credential_cursor")
        credential = await pool.acquire()
        if credential is None:
            ...  # no credentials configured
    """

    def __init__(self, credentials: Sequence[str], store: StateStore, cursor_key: str):
        self._credentials: Tuple[str, ...] = tuple(credentials)
        self.store = store
        self.cursor_key = cursor_key

    @property
    def size(self) -> int:
        return len(self._credentials)

    @property
    def is_empty(self) -> bool:
        return not self._credentials

    async def cursor(self) -> Optional[int]:
        """Index the next ``advance`` will consume, or None for an empty pool."""
        if self.is_empty:
            return None
        return (await self.store.get_cursor(self.cursor_key)) % self.size

    async def current(self) -> Optional[str]:
        """Credential at the cursor, without advancing."""
        index = await self.cursor()
        return None if index is None else self._credentials[index]

    async def advance(self) -> Optional[Tuple[int, int]]:
        """Atomically move the cursor one step.

        Returns:
            (index consumed by this call, new cursor), or None for an empty pool.
        """
        if self.is_empty:
            return None
        return await self.store.advance_cursor(self.cursor_key, self.size)

    async def acquire(self) -> Optional[PooledCredential]:
        """Take the credential at the cursor and advance past it.

        Concurrent callers each receive a distinct slot because the index
        comes from the same atomic operation that moves the cursor.
        """
        advanced = await self.advance()
        if advanced is None:
            return None
        consumed, _next = advanced
        return PooledCredential(index=consumed, api_key=self._credentials[consumed])
