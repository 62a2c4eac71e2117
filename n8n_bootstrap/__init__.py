"""n8n Deployment Bootstrap."""

__version__ = "0.1.0"
