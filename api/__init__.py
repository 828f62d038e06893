"""
FastAPI RESTful API for the Book Store.

This module provides a JSON REST API for:
- Adding, updating and removing books
- Listing, searching and filtering books by genre or availability
- Keeping stock levels and availability in step
"""
