"""Public-schema models (shared across all agencies)."""

from carebase.models.public.agency import Agency

__all__ = ["Agency"]
