"""Combis: governance votes and member notifications for a mutual-aid association."""
