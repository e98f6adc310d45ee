"""
Role and permission feature module.

Implements Role-Based Access Control (RBAC) over a fixed role hierarchy:
each role holds its own permissions plus those of every role it inherits.
"""
