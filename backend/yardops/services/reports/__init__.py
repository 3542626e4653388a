"""Sales and financial reports."""
