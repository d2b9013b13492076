"""Route modules for the CFRec API."""
