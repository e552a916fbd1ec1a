"""Persistencia de eventos crudos de actividad de código."""
