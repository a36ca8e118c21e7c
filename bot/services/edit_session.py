from __future__ import annotations

import logging

from core.errors import EditSessionActiveError, ValidationError
from services.cache import CacheBackend
from utils.constants import edit_session_key

LOGGER = logging.getLogger(__name__)


class EditSessionLock:
    """Per-operator advisory lock for the panel editor.

    The lock lives only in the lease cache under ``panel_edit_session:<operator_id>``
    and expires on its own after ``ttl_seconds``. Acquisition is a single
    set-if-absent call, so two concurrent acquires for the same operator cannot
    both succeed. Release does not check ownership.
    """

    def __init__(self, cache: CacheBackend, ttl_seconds: int = 600) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def acquire(self, operator_id: int) -> None:
        acquired = await self.cache.set_if_absent(
            edit_session_key(operator_id), str(operator_id), ttl=self.ttl_seconds
        )
        if not acquired:
            raise EditSessionActiveError()
        LOGGER.debug("Edit session opened for operator %s", operator_id)

    async def is_active(self, operator_id: int) -> bool:
        return await self.cache.get(edit_session_key(operator_id)) is not None

    async def require_active(self, operator_id: int) -> None:
        if not await self.is_active(operator_id):
            raise ValidationError(
                "Your editing session expired. Start the panel editor again."
            )

    async def release(self, operator_id: int) -> None:
        await self.cache.delete(edit_session_key(operator_id))
        LOGGER.debug("Edit session released for operator %s", operator_id)
