"""API clients for the console and the Salsa storage platform."""
