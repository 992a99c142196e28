"""Backend for packing and unpacking GIS session data.

The FastAPI handlers in server.py stay thin:
- folder and manifest packing into "GIS-DATA ..." zip archives
- recursive extraction of nested zips with an extension allow-list
- bundling of loose shapefile components into per-shapefile zips
- background jobs with throttled progress for all of the above

Paths in requests are trusted device-local paths; archive entry names are
not, so every extracted file is flattened to its basename and written
through safe_join.
"""
