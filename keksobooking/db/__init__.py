"""Database models and utilities."""

from keksobooking.db import models

__all__ = ["models"]
