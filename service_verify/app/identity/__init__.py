"""Identity extraction from validated claims."""
