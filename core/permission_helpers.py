from typing import Optional

from models.coordination import PermissionSet
from models.enums import PermissionKey, Role
from models.identity import Identity


# -----------------------------------------------------
# Role supersedes staff-record grants
# -----------------------------------------------------
def role_grants_everything(identity: Optional[Identity]) -> bool:
    return identity is not None and identity.role == Role.coordinator


# -----------------------------------------------------
# Permission evaluation
# -----------------------------------------------------
def has_permission(permissions: Optional[PermissionSet], key) -> bool:
    """``all`` grants every key, even one stored as False."""
    if permissions is None:
        return False

    # "all" short-circuits
    if permissions.all is True:
        return True

    key = PermissionKey(str(key)).value
    return getattr(permissions, key, None) is True


def has_any_permission(permissions: Optional[PermissionSet]) -> bool:
    if permissions is None:
        return False
    return permissions.all is True or any(
        value is True for value in permissions.model_dump().values()
    )
