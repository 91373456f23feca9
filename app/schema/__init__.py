"""Database models for users and registered push devices."""
