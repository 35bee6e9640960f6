"""``courier`` command line interface."""
