"""doraflow: DORA and flow metrics from Azure DevOps pull requests, builds and deployments."""

__version__ = "0.1.0"
