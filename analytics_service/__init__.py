"""Agregador de analytics por sesión de código."""
