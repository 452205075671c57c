# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Invalidation Event Types — vocabulary of the push channel.

All event types MUST be UPPERCASE strings.
"""

# --- Tenant record changes (admin settings) ---
TENANT_UPDATED = "TENANT_UPDATED"
CUSTOM_DOMAIN_CHANGED = "CUSTOM_DOMAIN_CHANGED"

# --- Membership / principal changes ---
MEMBERSHIP_CHANGED = "MEMBERSHIP_CHANGED"
ROLE_CHANGED = "ROLE_CHANGED"
PRINCIPAL_STATUS_CHANGED = "PRINCIPAL_STATUS_CHANGED"

# --- Resource data changes (tenant-scoped queries) ---
RESOURCE_CHANGED = "RESOURCE_CHANGED"

# --- Session ---
TENANT_SWITCHED = "TENANT_SWITCHED"

ALL_EVENT_TYPES = {
    TENANT_UPDATED,
    CUSTOM_DOMAIN_CHANGED,
    MEMBERSHIP_CHANGED,
    ROLE_CHANGED,
    PRINCIPAL_STATUS_CHANGED,
    RESOURCE_CHANGED,
    TENANT_SWITCHED,
}
