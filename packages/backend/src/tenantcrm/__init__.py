"""tenantcrm: multi-tenant CRM backend.

Session-based authentication, organization-scoped identities, and
role/permission route gating. Business entity CRUD lives behind the
storage layer and is not part of this package.
"""

__version__ = "0.1.0"
