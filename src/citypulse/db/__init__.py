"""Postgres access helpers."""
