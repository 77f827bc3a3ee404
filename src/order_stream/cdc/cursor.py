"""Delivery cursor over the change log"""

from loguru import logger

from .base import CDCPositionError, CDCSetupError, ChangeRecordSource


class CursorTracker:
    """
    Highest change id known to be fully delivered

    The cursor is never stored on its own: it is recovered from the
    durable delivered flags of the change log on every start.
    """

    def __init__(self, source: ChangeRecordSource):
        self.source = source
        self.position = 0
        self.initialized = False

    def initialize(self) -> int:
        """
        Recover the cursor from the change log

        Returns:
            Cursor value (0 when nothing has been delivered yet)
        """
        try:
            value = self.source.max_delivered_id()
        except Exception as e:
            raise CDCSetupError(f"Failed to initialize change cursor: {e}")

        self.position = int(value or 0)
        self.initialized = True
        logger.info(f"Starting from change ID: {self.position}")
        return self.position

    def advance(self, change_id: int) -> int:
        """
        Move the cursor forward to `change_id`

        Re-advancing to the current position is a no-op; moving backward is
        an ordering violation and is refused.
        """
        if change_id < self.position:
            logger.error(
                f"Cursor invariant violation: refusing to move from {self.position} back to {change_id}"
            )
            raise CDCPositionError(
                f"Cursor cannot move backward ({self.position} -> {change_id})"
            )

        self.position = change_id
        return self.position
