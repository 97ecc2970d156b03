# Access control
#
# Access checks are answered by an AccessPolicy, the results carry the cacheability
# they depend on (eg. the permissions of the current user) so that a response which was
# restricted for one user is never served from cache to another one.
#
# Operations:
#   - "view": read the item or field
#   - "view label": read only the label of an item
#   - "edit", "create", "delete": write operations
#
from dataclasses import dataclass, field
import contentapi
from .cacheability import CacheableMetadata

VIEW = "view"
VIEW_LABEL = "view label"
EDIT = "edit"
CREATE = "create"
DELETE = "delete"
OPERATIONS = (VIEW, VIEW_LABEL, EDIT, CREATE, DELETE)

ALLOWED = "allowed"
DENIED = "denied"
NEUTRAL = "neutral"


@dataclass(frozen=True)
class AccessResult:
    """
    Outcome of an access check, neutral results are not allowed
    """

    status: str = NEUTRAL
    reason: str = ""
    cacheability: CacheableMetadata = field(default_factory=CacheableMetadata)

    @classmethod
    def allowed(cls, cacheability=None):
        return cls(ALLOWED, "", cacheability or CacheableMetadata())

    @classmethod
    def denied(cls, reason="", cacheability=None):
        return cls(DENIED, reason, cacheability or CacheableMetadata())

    @classmethod
    def neutral(cls, reason="", cacheability=None):
        return cls(NEUTRAL, reason, cacheability or CacheableMetadata())

    @classmethod
    def allowed_if(cls, condition, reason="", cacheability=None):
        return cls.allowed(cacheability) if condition else cls.neutral(reason, cacheability)

    @property
    def is_allowed(self) -> bool:
        return self.status == ALLOWED

    @property
    def is_denied(self) -> bool:
        return self.status == DENIED

    def and_(self, other: "AccessResult") -> "AccessResult":
        """
        Both results must allow: a denial wins over neutral, neutral wins over allowed
        """
        cacheability = self.cacheability.merge(other.cacheability)
        if self.is_denied or (not other.is_denied and not self.is_allowed):
            first = self
        else:
            first = other
        if first.is_allowed:
            return AccessResult.allowed(cacheability)
        return AccessResult(first.status, first.reason, cacheability)

    def with_cacheability(self, cacheability: CacheableMetadata) -> "AccessResult":
        return AccessResult(self.status, self.reason, self.cacheability.merge(cacheability))


class AccessPolicy:
    """
    Default policy: everything is allowed.
    Subclass and override check() to restrict access.
    """

    # cache contexts every answer of this policy depends on
    contexts = ("user.permissions",)

    def check(self, operation, item, resource_type, field=None) -> AccessResult:
        """
        :param operation: one of OPERATIONS
        :param item: the stored item (None for "create" checks on a collection)
        :param resource_type: ResourceType of the item
        :param field: internal field name for field-level checks, None for item-level checks
        :return: AccessResult
        """
        return AccessResult.allowed(CacheableMetadata.create(contexts=self.contexts))


class ColumnPermissionPolicy(AccessPolicy):
    """
    Field-level access from the column permissions:
        DB.Column(DB.String, info={"permissions": "r"})
    "r": the column may be viewed, "w": the column may be edited, "rw" is the default.

    Item-level access is delegated to the model when it implements
        def jsonapi_access(self, operation) -> bool
    """

    def check(self, operation, item, resource_type, field=None) -> AccessResult:
        cacheability = CacheableMetadata.create(contexts=self.contexts)
        if field is not None:
            return self.check_field(operation, resource_type, field, cacheability)

        access_hook = getattr(item, "jsonapi_access", None)
        if item is None or not callable(access_hook):
            return AccessResult.allowed(cacheability)
        cacheability = cacheability.merge(CacheableMetadata.for_item(resource_type.type_name, resource_type.item_id(item)))
        result = access_hook(operation)
        if isinstance(result, AccessResult):
            return result.with_cacheability(cacheability)
        return AccessResult.allowed_if(result, f"The current user is not allowed to {operation} this resource.", cacheability)

    @staticmethod
    def check_field(operation, resource_type, field, cacheability) -> AccessResult:
        column = resource_type.get_column(field)
        if column is None:
            # relationships and computed fields carry no column permissions
            return AccessResult.allowed(cacheability)
        permissions = column.info.get("permissions", getattr(column, "permissions", "rw"))
        permission = "w" if operation in (EDIT, CREATE) else "r"
        if permission in permissions:
            return AccessResult.allowed(cacheability)
        return AccessResult.denied(f"The current user is not allowed to {operation} the field '{field}'.", cacheability)


class AccessChecker:
    """
    Per-assembly memo of access results, keyed by (type, id, field, operation)
    """

    def __init__(self, check=None):
        """
        :param check: callable(operation, item, resource_type, field) -> AccessResult, eg. AccessPolicy().check
        """
        self._check = check if check is not None else AccessPolicy().check
        self._results = {}

    def check(self, operation, item, resource_type, item_id=None, field=None) -> AccessResult:
        key = (resource_type.type_name, item_id, field, operation)
        result = self._results.get(key)
        if result is None or item_id is None:
            result = self._check(operation, item, resource_type, field)
            if not isinstance(result, AccessResult):
                result = AccessResult.allowed_if(result)
            if not result.is_allowed:
                contentapi.log.debug(f"Access {result.status}: {operation} {resource_type.type_name}:{item_id} {field or ''}")
            self._results[key] = result
        return result
