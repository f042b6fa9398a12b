"""AI-assisted classification and report extraction."""
