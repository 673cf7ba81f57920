"""Revision status lifecycle."""
