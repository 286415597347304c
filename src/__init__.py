"""Eleva splits - commission and revenue-split engine."""
