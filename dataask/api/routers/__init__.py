"""
FastAPI routers for the DataAsk API.

``files`` covers upload, preview and the import lifecycle; ``db`` covers
connections, schema browsing, read-only queries and column statistics.
"""
