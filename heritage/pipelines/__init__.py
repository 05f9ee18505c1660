"""Request pipelines: citation resolution, gallery uploads, reviews and the
CRUD helpers behind the admin panel, trip builder and notebook.

Each step is callable independently so handlers and batch jobs share it.
"""
