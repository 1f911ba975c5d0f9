"""Declarative base shared by all mirror models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
