# JSON:API pagination (https://jsonapi.org/format/#fetching-pagination)
#
# Offset based paging: page[offset] and page[limit] (or page[size]).
# page[number] is accepted too and converted to an offset.
#
# One row more than the page size is queried: when it's returned there is a next page,
# that way no count query is needed.
#
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
from .config import get_int_config
from .errors import ParseError

DEFAULT_MAX_SIZE = 50


def max_page_size() -> int:
    return get_int_config("MAX_PAGE_SIZE", DEFAULT_MAX_SIZE) or DEFAULT_MAX_SIZE


def _to_int(raw, key) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ParseError(f"page[{key}] must be an integer, got '{raw}'")
    if value < 0:
        raise ParseError(f"page[{key}] must not be negative, got '{raw}'")
    return value


@dataclass(frozen=True)
class OffsetPage:
    offset: int = 0
    size: int = DEFAULT_MAX_SIZE

    @classmethod
    def from_params(cls, raw: Optional[dict], max_size: Optional[int] = None) -> "OffsetPage":
        """
        :param raw: parsed page[...] query parameters, eg. {"offset": "10", "limit": "5"}
        :param max_size: page size limit, the requested size is silently clamped to it
        :return: OffsetPage
        """
        if max_size is None:
            max_size = max_page_size()
        if raw is None or raw == {}:
            return cls(0, max_size)
        if not isinstance(raw, dict):
            raise ParseError("The page parameter needs to be an array of values, eg. page[offset]=10&page[limit]=5")

        size = max_size
        for key in ("limit", "size"):
            if key in raw:
                size = _to_int(raw[key], key)
                if size == 0:
                    raise ParseError(f"page[{key}] must be at least 1")
        size = min(size, max_size)

        offset = 0
        if "offset" in raw:
            offset = _to_int(raw["offset"], "offset")
        elif "number" in raw:
            number = _to_int(raw["number"], "number")
            if number == 0:
                raise ParseError("page[number] starts at 1")
            offset = (number - 1) * size
        return cls(offset, size)

    @property
    def query_size(self) -> int:
        """
        :return: the number of rows to query, one more than the page size to detect a next page
        """
        return self.size + 1

    def slice_results(self, rows: Sequence) -> Tuple[list, bool]:
        """
        :param rows: the (at most query_size) rows returned by the query
        :return: the rows of the page, whether there's a next page
        """
        rows = list(rows)
        return rows[: self.size], len(rows) > self.size

    def next_page(self) -> "OffsetPage":
        return OffsetPage(self.offset + self.size, self.size)

    def previous_page(self) -> "OffsetPage":
        return OffsetPage(max(self.offset - self.size, 0), self.size)

    def first_page(self) -> "OffsetPage":
        return OffsetPage(0, self.size)

    def to_params(self) -> dict:
        return {"page[offset]": str(self.offset), "page[limit]": str(self.size)}
