"""SiteDeck deployment engine.

This package holds the file change tracker, the local state store, the AWS
provisioners and the orchestrator that sequences them.
"""

from sitedeck.deploy.orchestrator import Deployer
from sitedeck.deploy.state import StateStore

__all__ = ["Deployer", "StateStore"]
