"""Principal-facing authorization checks and grants."""
