"""Import all models here so metadata knows every table."""

from moneyflows.db.base_class import Base
from moneyflows.models import automation  # noqa: F401

__all__ = ["Base"]
