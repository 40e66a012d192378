"""Daily snapshot capture and milestone duration tracking for projects and change requests."""
