"""Self-contained helper modules for azmsi (SSH, prerequisites, progress)."""
