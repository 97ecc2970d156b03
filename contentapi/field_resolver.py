# Field path resolution
#
# Public field paths (as used in filter[...][path] and sort) are dotted sequences of public field names,
# eg. "author.name" for articles. Every segment except the last one must be a reference field (relationship),
# the segments are translated to the internal names used by the query engine.
#
from dataclasses import dataclass
from typing import Tuple
from .errors import FieldResolutionError
from .resource_type import ResourceType

PATH_DELIMITER = "."
ID_FIELD = "id"


@dataclass(frozen=True)
class ResolvedPath:
    """
    :param public_path: the path as sent by the client
    :param internal_path: internal field names, one per segment
    :param resource_types: the resource type each segment was resolved against
    :param is_reference: whether the last segment is a reference field
    """

    public_path: str
    internal_path: Tuple[str, ...]
    resource_types: Tuple[ResourceType, ...]
    is_reference: bool = False
    is_id: bool = False

    @property
    def internal(self) -> str:
        return PATH_DELIMITER.join(self.internal_path)

    @property
    def target_type(self) -> ResourceType:
        return self.resource_types[-1]


class FieldResolver:
    """
    Resolves public field paths against the resource types of a repository
    """

    def __init__(self, repository):
        self.repository = repository

    def resolve(self, resource_type: ResourceType, public_path: str) -> ResolvedPath:
        """
        :param resource_type: the type the path starts from
        :param public_path: dotted public field path
        :return: ResolvedPath
        :raises FieldResolutionError: empty path, unknown field, or a non-reference field in the middle of the path
        """
        if not isinstance(public_path, str) or not public_path.strip():
            raise FieldResolutionError("Empty field path", path=public_path)

        segments = public_path.split(PATH_DELIMITER)
        if any(not segment for segment in segments):
            raise FieldResolutionError(f"Invalid field path '{public_path}'", path=public_path)

        current = resource_type
        internal_path = []
        resource_types = []
        for position, segment in enumerate(segments):
            is_last = position == len(segments) - 1
            resource_types.append(current)
            if is_last and segment == ID_FIELD:
                if len(current.id_fields) != 1:
                    raise FieldResolutionError(f"Can't filter or sort on the id of {current.type_name}", path=public_path)
                internal_path.append(current.id_fields[0])
                return ResolvedPath(public_path, tuple(internal_path), tuple(resource_types), is_id=True)

            internal = current.get_internal_name(segment)
            if internal is None:
                raise FieldResolutionError(
                    f"'{segment}' is not a field of {current.type_name} (path '{public_path}')", path=public_path
                )
            internal_path.append(internal)
            is_reference = current.is_reference_field(segment)
            if is_last:
                return ResolvedPath(public_path, tuple(internal_path), tuple(resource_types), is_reference=is_reference)
            if not is_reference:
                raise FieldResolutionError(
                    f"Invalid nested filtering: '{segment}' of {current.type_name} is not a relationship (path '{public_path}')",
                    path=public_path,
                )
            current = self._target_type(current, segment, public_path)

        raise FieldResolutionError(f"Invalid field path '{public_path}'", path=public_path)  # pragma: no cover

    def _target_type(self, resource_type: ResourceType, public_name: str, public_path: str) -> ResourceType:
        """
        Relationships may point to several types (inheritance), the path continues on the first exposed one
        """
        for type_name in resource_type.get_relatable_types(public_name):
            if type_name in self.repository:
                return self.repository.get_by_type_name(type_name)
        raise FieldResolutionError(f"'{public_name}' of {resource_type.type_name} doesn't point to an exposed type", path=public_path)
