"""Declarative base shared by every table module."""

from sqlalchemy.orm import DeclarativeBase

SCHEMA = "lockmarket"


class Base(DeclarativeBase):
    pass
