"""
Backend package for the Collective media-tracking API.

This package provides a FastAPI application that reads and writes user-owned
ATProto records and keeps a relational cache of aggregate statistics and
server-only data (tags, share links, feedback, feed events).
"""
