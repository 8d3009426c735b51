"""
API routers for the storefront.

Each module defines the routers mounted by ``storefront.api.app``.
"""
