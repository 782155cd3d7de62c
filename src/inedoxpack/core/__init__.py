"""Core services: errors, logging and configuration."""
