# Cacheability metadata
#
# Every piece of a JSON:API document depends on some stored state (cache tags),
# on some request variation (cache contexts) and may only be valid for a limited time (max-age).
# The metadata of the parts is merged bottom-up into the metadata of the response.
#
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

# max-age values
PERMANENT = None  # identity of the max-age merge
UNCACHEABLE = -1  # dominates every other max-age


def merge_max_age(first: Optional[int], second: Optional[int]) -> Optional[int]:
    """
    :return: the most restrictive of two max-age values
    """
    if first == UNCACHEABLE or second == UNCACHEABLE:
        return UNCACHEABLE
    if first is PERMANENT:
        return second
    if second is PERMANENT:
        return first
    return min(first, second)


@dataclass(frozen=True)
class CacheableMetadata:
    """
    Immutable (tags, contexts, max-age) triple
    """

    tags: FrozenSet[str] = field(default_factory=frozenset)
    contexts: FrozenSet[str] = field(default_factory=frozenset)
    max_age: Optional[int] = PERMANENT

    @classmethod
    def create(cls, tags: Iterable[str] = (), contexts: Iterable[str] = (), max_age: Optional[int] = PERMANENT) -> "CacheableMetadata":
        return cls(frozenset(tags), frozenset(contexts), max_age)

    @classmethod
    def for_item(cls, type_name: str, item_id: str) -> "CacheableMetadata":
        """
        :return: metadata tagged with the "<type>:<id>" of a stored item
        """
        return cls(frozenset([f"{type_name}:{item_id}"]))

    @classmethod
    def for_list(cls, type_name: str) -> "CacheableMetadata":
        """
        :return: metadata tagged with the "<type>_list" tag, invalidated by any change in the collection
        """
        return cls(frozenset([f"{type_name}_list"]))

    @classmethod
    def uncacheable(cls) -> "CacheableMetadata":
        return cls(max_age=UNCACHEABLE)

    def merge(self, other: Optional["CacheableMetadata"]) -> "CacheableMetadata":
        """
        Union of tags and contexts, most restrictive max-age.
        """
        if other is None:
            return self
        return CacheableMetadata(self.tags | other.tags, self.contexts | other.contexts, merge_max_age(self.max_age, other.max_age))

    @classmethod
    def merge_all(cls, items: Iterable[Optional["CacheableMetadata"]]) -> "CacheableMetadata":
        result = cls()
        for item in items:
            result = result.merge(item)
        return result

    @property
    def is_cacheable(self) -> bool:
        return self.max_age is PERMANENT or self.max_age > 0

    def headers(self) -> dict:
        """
        :return: HTTP response headers describing the cacheability
        """
        if not self.is_cacheable:
            cache_control = "no-cache, private"
        elif self.max_age is PERMANENT:
            cache_control = "public"
        else:
            cache_control = f"max-age={self.max_age}, public"
        result = {"Cache-Control": cache_control}
        if self.tags:
            result["X-Cache-Tags"] = " ".join(sorted(self.tags))
        if self.contexts:
            result["X-Cache-Contexts"] = " ".join(sorted(self.contexts))
        if any(context.startswith("user") for context in self.contexts):
            # responses that depend on the current user vary on its credentials
            result["Vary"] = "Authorization, Cookie"
        return result
