"""mirrorkit - Bitbucket primary and smart mirror provisioning"""

__version__ = "0.1.0"
