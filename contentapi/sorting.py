# JSON:API sorting (https://jsonapi.org/format/#fetching-sorting)
#
# sort=-created,title
# The sort order for each sort field MUST be ascending unless it is prefixed
# with a minus, in which case it MUST be descending.
#
from dataclasses import dataclass, field
from typing import List
from .errors import ParseError
from .resource_type import UNLIMITED

ASC = "ASC"
DESC = "DESC"


@dataclass(frozen=True)
class SortKey:
    path: str
    direction: str = ASC
    resolved: object = field(default=None, compare=False)  # ResolvedPath


def parse_sort(value) -> List[SortKey]:
    """
    :param value: the sort query parameter
    :return: list of SortKey, in the order of the parameter
    """
    if not isinstance(value, str):
        raise ParseError("The sort parameter must be a comma separated list of fields")
    if not value.strip():
        raise ParseError("The sort parameter must not be empty")

    result = []
    for segment in value.split(","):
        segment = segment.strip()
        direction = ASC
        if segment.startswith("-"):
            direction = DESC
            segment = segment[1:]
        if not segment:
            raise ParseError(f"Invalid sort parameter '{value}': empty sort field")
        result.append(SortKey(segment, direction))
    return result


def resolve_sort(keys, resolver, resource_type) -> List[SortKey]:
    """
    Resolve the sort fields, sorting is only possible on attributes.
    Paths through a to-many relationship are rejected: they repeat the sorted items.
    """
    result = []
    for key in keys:
        resolved = resolver.resolve(resource_type, key.path)
        if resolved.is_reference:
            raise ParseError(f"Can't sort on relationship '{key.path}', sort on one of its attributes instead")
        segments = key.path.split(".")
        for segment, segment_type in zip(segments[:-1], resolved.resource_types):
            if segment_type.get_cardinality(segment) == UNLIMITED:
                raise ParseError(f"Can't sort on '{key.path}': '{segment}' is a to-many relationship")
        result.append(SortKey(key.path, key.direction, resolved))
    return result
