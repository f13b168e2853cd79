"""Install engine core — hashing, downloads, stores, planning, execution, recovery."""
