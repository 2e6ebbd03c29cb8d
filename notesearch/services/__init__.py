"""Application services layered over the database."""
