"""HTTP api layer."""

from .client import Api, ApiError, Operation

__all__ = ['Api', 'ApiError', 'Operation']
