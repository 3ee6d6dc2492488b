from django.db import models

class TenantRole(models.TextChoices):
    ADMIN    = "admin",    "Admin"
    MANAGER  = "manager",  "Manager"
    OPERATOR = "operator", "Operator"


# Roles allowed to post wallet transactions (earn/redeem/adjust).
LEDGER_ROLES = frozenset({TenantRole.ADMIN, TenantRole.MANAGER})
# Roles allowed to create or edit the loyalty program.
PROGRAM_ROLES = frozenset({TenantRole.ADMIN})
