"""Request middleware and logging setup."""
