"""
Roles, permissions, modules and teams.

Entity models, the SQLAlchemy association store, the entity resolvers and the
FastAPI dependencies built on them.
"""
