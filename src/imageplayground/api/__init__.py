"""Image Playground — FastAPI REST API layer.

This package contains the FastAPI application and the Pydantic request and
response models.

Modules
-------
main
    FastAPI application factory, all route handlers, and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request and response bodies.
"""
