# Import models here so Alembic can discover metadata.
from app.models.user import User  # noqa: F401

# tenants, memberships, billing
from app.models.tenant import Tenant  # noqa: F401
from app.models.tenant_membership import TenantMembership  # noqa: F401
from app.models.billing_event import AppliedBillingEvent  # noqa: F401
