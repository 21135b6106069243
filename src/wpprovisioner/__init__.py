"""
wpprovisioner - Local WordPress site provisioning on MySQL
"""

__version__ = "0.1.0"

from .core import ProvisionerError, SiteProvisioner

__all__ = ["ProvisionerError", "SiteProvisioner"]
