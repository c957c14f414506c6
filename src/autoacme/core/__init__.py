"""Core value types (challenge enums, host names)."""
