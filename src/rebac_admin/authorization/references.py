"""Builders for subject/object references used in tuples.

References are ``type:id`` strings, optionally suffixed with ``#relation``
to denote a set (e.g. every member of a group).
"""

ASSIGNEE_RELATION = "assignee"
MEMBER_RELATION = "member"
PRIVILEGED_RELATION = "privileged"

USER_TYPE = "user"
GROUP_TYPE = "group"
ROLE_TYPE = "role"
IDENTITY_TYPE = "identity"
CLIENT_TYPE = "client"
PROVIDER_TYPE = "provider"
RULE_TYPE = "rule"
SCHEME_TYPE = "scheme"
APPLICATION_TYPE = "application"
PRIVILEGED_TYPE = "privileged"

KNOWN_TYPES = frozenset({
    USER_TYPE,
    GROUP_TYPE,
    ROLE_TYPE,
    IDENTITY_TYPE,
    CLIENT_TYPE,
    PROVIDER_TYPE,
    RULE_TYPE,
    SCHEME_TYPE,
    APPLICATION_TYPE,
    PRIVILEGED_TYPE,
})

# Admins are users holding "admin" on this object
ADMIN_OBJECT = "privileged:superuser"


def reference(ref_type: str, ref_id: str, relation: str = "") -> str:
    """Build a ``type:id[#relation]`` reference, validating the type."""
    if ref_type not in KNOWN_TYPES:
        raise ValueError(f"unknown reference type '{ref_type}'")
    ref = f"{ref_type}:{ref_id}"
    if relation:
        ref = f"{ref}#{relation}"
    return ref


def reference_type(ref: str) -> str:
    """Return the type part of a reference, validating it."""
    ref_type, sep, _ = ref.partition(":")
    if not sep or ref_type not in KNOWN_TYPES:
        raise ValueError(f"invalid reference '{ref}'")
    return ref_type


def user_for_tuple(user_id: str) -> str:
    return reference(USER_TYPE, user_id)


def user_wildcard_for_tuple() -> str:
    return f"{USER_TYPE}:*"


def role_for_tuple(role_id) -> str:
    return reference(ROLE_TYPE, str(role_id))


def role_assignee_for_tuple(role_id) -> str:
    return reference(ROLE_TYPE, str(role_id), ASSIGNEE_RELATION)


def group_for_tuple(group_id: str) -> str:
    return reference(GROUP_TYPE, group_id)


def group_member_for_tuple(group_id: str) -> str:
    return reference(GROUP_TYPE, group_id, MEMBER_RELATION)


def identity_for_tuple(identity_id: str) -> str:
    return reference(IDENTITY_TYPE, identity_id)
