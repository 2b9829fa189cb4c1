"""Relational persistence for users, focus sessions, flowers and tasks."""
