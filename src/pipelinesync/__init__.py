"""pipelinesync - keeps a build dashboard database in sync with Azure DevOps."""

from pipelinesync.constants import VERSION

__version__ = VERSION
