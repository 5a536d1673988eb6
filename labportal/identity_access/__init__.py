"""Identity & session bounded context."""
