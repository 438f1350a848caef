"""Core module for the netwin admin backend."""
