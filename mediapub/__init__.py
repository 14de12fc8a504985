"""
Media publishing backend.

Users sign up, log in with session/refresh token pairs, and upload files
with metadata. Each upload is written to the filesystem, recorded as a row
in the relational store and described by a document in the document store.
"""
