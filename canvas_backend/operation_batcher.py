import asyncio
import logging
from typing import Any, Dict, List, Optional

from canvas_backend.models import utcnow
from canvas_backend.state_store import AsyncCanvasStore


logger = logging.getLogger(__name__)


class OperationBatcher:
    """
    Копит записи журнала операций и пишет их пачкой
    через delay секунд после первой записи в пачке.

    Неудачная запись логируется, пачка отбрасывается.
    """

    def __init__(self, store: AsyncCanvasStore, delay: float = 1.0):
        self.store = store
        self.delay = delay
        self._pending: List[Dict[str, Any]] = []
        self._flush_task: Optional[asyncio.Task] = None
        # True, пока таймерная задача пишет пачку; такую задачу не отменяем.
        self._flushing = False
        self._closing = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add(self, op_type: str, state_version: int, section: Optional[str] = None,
            data: Any = None, created_by: str = "system") -> None:
        self._pending.append({
            "type": op_type,
            "section": section,
            "data": data,
            "state_version": state_version,
            "created_by": created_by,
            "created_at": utcnow(),
        })

        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        while True:
            await asyncio.sleep(self.delay)

            self._flushing = True
            try:
                await self.flush()
            finally:
                self._flushing = False

            # Записи, пришедшие во время flush, ждут следующего такта.
            if not self._pending or self._closing:
                return

    async def flush(self) -> int:
        """
        Записывает всё накопленное. Возвращает число записанных операций.
        """

        batch, self._pending = self._pending, []
        if not batch:
            return 0

        try:
            await self.store.save_operations(batch)
        except Exception:
            logger.exception("Failed to flush %d canvas operations", len(batch))
            return 0

        logger.debug("Flushed %d canvas operations", len(batch))
        return len(batch)

    async def close(self) -> None:
        """
        Отменяет таймер и дописывает остаток.
        Если пачка уже пишется, дожидается её записи.
        """

        self._closing = True
        task = self._flush_task
        self._flush_task = None
        if task is not None and not task.done():
            if self._flushing:
                await task
            else:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await self.flush()
