"""Mock providers for tests and --mock mode."""
