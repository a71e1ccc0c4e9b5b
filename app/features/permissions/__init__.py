"""
Permission feature module.

Resolves effective feature permissions for a user acting inside an
organization from organization enablement, organization-scoped roles and
per-user overrides.
"""
