"""FastAPI wrapper for the CFRec engine.

This package contains the FastAPI application, route handlers and logging
configuration. It holds no recommendation logic or metrics state of its
own; every endpoint delegates to the engine facade.
"""
