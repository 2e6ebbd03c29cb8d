"""notesearch REST API package.

Sub-modules expose FastAPI routers for each domain:
- notes: note lifecycle (create, edit, trash, restore, purge)
- search: hybrid search, quick search and embedding index management
"""
