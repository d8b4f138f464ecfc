"""azmsi - Azure managed identity demo provisioning CLI

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Security by design (no credentials in code)
- Fail fast with helpful guidance

azmsi provisions a throwaway Azure environment (Application Insights or
Synapse Analytics) next to an Ubuntu VM with a system-assigned managed
identity, proves the identity can reach the service from inside the VM,
and deletes everything again.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
