"""Multi-tenant identity, tenant resolution and authorization core for billing services."""
