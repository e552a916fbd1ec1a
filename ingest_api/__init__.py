"""Gateway de ingesta de eventos de actividad de código."""
