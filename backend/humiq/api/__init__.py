"""
HumIQ Work Sessions - API Package
=================================

FastAPI application and routers.
"""
