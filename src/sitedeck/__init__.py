"""SiteDeck - Deploy static sites to S3 and CloudFront from one YAML file.

SiteDeck publishes a build directory to an S3 bucket, fronts it with a
CloudFront distribution, and wires up an ACM certificate and Route53 records
for custom domains.

Main features:
- Incremental uploads driven by content digests
- Local deployment state per environment, recoverable from resource tags
- Automatic certificate request and DNS validation
- Rollback of freshly created buckets when a deploy fails
"""

from sitedeck.config.loader import ConfigLoader
from sitedeck.lib.errors import ConfigError, DeploymentError, SiteDeckError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigLoader",
    "ConfigError",
    "DeploymentError",
    "SiteDeckError",
]
