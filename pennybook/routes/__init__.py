"""
FastAPI routers for all API endpoints.

Each module defines a router for one domain (transactions, recurring templates, health).
"""
