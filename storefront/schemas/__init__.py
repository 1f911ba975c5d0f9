"""
schemas/ — Pydantic models for the normalized catalog record and
request bodies used by the routers.
"""
