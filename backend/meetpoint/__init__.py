"""Meetpoint backend: fair meeting points between two or more parties."""
