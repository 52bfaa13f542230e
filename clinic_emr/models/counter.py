"""Named sequence counters."""

from beanie import Document, Indexed
from pymongo import ReturnDocument


class Counter(Document):
    """A named, monotonically increasing sequence (e.g. invoice numbers)."""

    name: Indexed(str, unique=True)
    seq: int = 0

    class Settings:
        name = "counters"


async def next_sequence(name: str) -> int:
    """Atomically advance the named counter and return its new value."""
    collection = Counter.get_motor_collection()
    counter = await collection.find_one_and_update(
        {"name": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]
