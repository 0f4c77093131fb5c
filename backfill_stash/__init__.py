"""BackfillStash: CSV-driven bulk execution of Postman collection requests."""

__version__ = "1.0.0"
