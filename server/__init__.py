"""Shelfsync library backend.

Modules:
- api: FastAPI table API (insert/update/upsert/delete per table)
- repository: generic row operations over the whitelisted tables
- models: SQLModel tables for annotations, bookmarks, progress, favorites, reviews
- moderation: profanity check for user-written text
- auth: signed bearer tokens
- config: INI parsing and config object
"""
