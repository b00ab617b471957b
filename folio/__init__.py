"""
Folio content-management backend.

This package provides a FastAPI application for a portfolio site: user
authentication, a contact-form inbox, and blog/project CRUD with media
attachments kept in an S3-compatible asset host.
"""
