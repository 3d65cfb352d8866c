"""
Account hierarchy enumerations.

Defines the tiers and lifecycle states of the reseller hierarchy.
"""

import enum


class AccountTier(str, enum.Enum):
    """
    Account tier enumeration.
    
    Tiers:
        ADMIN: Top of the hierarchy, funds itself through self credit
        DISTRIBUTOR: Created by admin, owns resellers
        RESELLER: Owned by a distributor (or directly by admin), owns subscribers
    """
    ADMIN = "admin"
    DISTRIBUTOR = "distributor"
    RESELLER = "reseller"


class AccountStatus(str, enum.Enum):
    """Account status. Active -> Inactive is the only automatic transition."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class SubscriberStatus(str, enum.Enum):
    """Subscriber (device) status."""
    FRESH = "Fresh"  # Registered, never paid for or released back
    ACTIVE = "Active"
    INACTIVE = "Inactive"
