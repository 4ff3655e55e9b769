import re
from typing import Dict, Optional

from catalog_api.crud.partitioned_store import PartitionedStore
from catalog_api.logging_config import get_child_logger, tracer

logger = get_child_logger("crud.key_generator")

NUMERIC_KEY = re.compile(r"[0-9]+")


def parse_numeric_key(row_key: str):
    """Return the integer value of a plain decimal row key, or None."""
    if NUMERIC_KEY.fullmatch(row_key):
        return int(row_key)
    return None


class KeyWatermark:
    """
    Highest numeric row key this process has seen per partition.

    Keys of deleted records no longer show up in a scan; remembering them
    here keeps them from being handed out again while the process lives.
    """

    def __init__(self):
        self._highest: Dict[str, int] = {}

    def observe(self, partition_key: str, row_key: str) -> None:
        value = parse_numeric_key(row_key)
        if value is not None and value > self.get(partition_key):
            self._highest[partition_key] = value

    def get(self, partition_key: str) -> int:
        return self._highest.get(partition_key, -1)


async def next_row_key(
    store: PartitionedStore, partition_key: str, watermark: Optional[KeyWatermark] = None
) -> str:
    """
    Derive the next row key for a partition.

    Scans the partition's live row keys and returns one more than the
    largest plain decimal key ("0" when there is none), or than the
    watermark when that is higher. Other keys are ignored. Two concurrent
    callers can get the same answer; the store's insert-if-absent is what
    rejects the loser.
    """
    with tracer.start_as_current_span("next_row_key") as span:
        span.set_attribute("partition_key", partition_key)

        highest = watermark.get(partition_key) if watermark is not None else -1
        scanned = 0
        async for row_key in store.iter_row_keys(partition_key):
            scanned += 1
            value = parse_numeric_key(row_key)
            if value is not None and value > highest:
                highest = value

        next_key = str(highest + 1)
        if watermark is not None:
            watermark.observe(partition_key, next_key)
        span.set_attribute("keys.scanned", scanned)
        span.set_attribute("row_key", next_key)
        logger.debug(
            "Generated row key",
            extra={"partition_key": partition_key, "row_key": next_key, "scanned": scanned},
        )
        return next_key
