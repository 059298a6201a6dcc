"""Social dashboard integration core."""
