"""Database/API connection handling: secrets, connection strings, testing."""
