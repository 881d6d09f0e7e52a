"""
User permission enumeration.

Defines the closed set of privileges a user can hold.
"""

import enum


class Permission(enum.IntFlag):
    """
    Permission flags, stored as a bitmask on the user row.

    Flags:
        ADMIN: Manages users, coin balances and the audit trail
        ORDER_CREATOR: Creates, closes, cancels and settles orders
    """
    NONE = 0
    ADMIN = 1
    ORDER_CREATOR = 2

    @classmethod
    def from_names(cls, names) -> "Permission":
        result = cls.NONE
        for name in names:
            result |= cls[name]
        return result

    def names(self) -> list:
        return [flag.name for flag in (Permission.ADMIN, Permission.ORDER_CREATOR) if flag in self]
