"""Background job handlers."""
