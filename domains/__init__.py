"""Domain modules for the medication reminder engine."""
