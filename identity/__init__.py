"""identity/ -- Users, institutions and memberships: domain models and repository.

Layer rule: identity/ imports only stdlib, third-party libraries and core/.
auth/ and api/ import from identity/, not the other way around.
"""
