"""
routers/ — FastAPI route modules.

catalog.py serves the public storefront reads; admin_sync.py holds the
admin-gated sync, job, cache and preorder endpoints. Business logic
lives in services/ and scheduler.py.
"""
