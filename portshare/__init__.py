"""Controllers, models and status text for sharing local services and pairing peers over Tailscale."""

__version__ = "0.1.0"