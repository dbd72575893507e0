"""Project discovery for an Azure DevOps organization."""

from typing import Iterable, List

from doraflow.exceptions import DiscoveryError
from doraflow.models.ingestion import ProjectRef
from doraflow.services.azure_devops import AzureDevOpsClient
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)


class ProjectDiscovery:
    """
    Lists the organization's projects and applies the exclusion list.

    A partial project list is never returned: if listing fails the run must
    abort, otherwise whole projects would silently drop out of the data.
    """

    def __init__(self, client: AzureDevOpsClient):
        self.client = client

    async def discover(self, exclude: Iterable[str] = ()) -> List[ProjectRef]:
        """
        Discover projects to ingest.

        Args:
            exclude: Project names to skip (exact, case-sensitive match)

        Returns:
            Projects in the order the API returned them

        Raises:
            DiscoveryError: If the project list cannot be retrieved
        """
        excluded = set(exclude)

        try:
            projects = await self.client.get_projects()
        except Exception as e:
            logger.error(f"Project discovery failed: {e}", extra={"error_type": type(e).__name__})
            raise DiscoveryError(f"Failed to list projects: {e}") from e

        selected = [
            ProjectRef(id=str(project.id) if getattr(project, "id", None) else None, name=project.name)
            for project in projects
            if getattr(project, "name", None) and project.name not in excluded
        ]

        logger.info(
            f"Discovered {len(selected)} of {len(projects)} projects "
            f"(excluded: {', '.join(sorted(excluded)) or 'none'})",
            extra={"projects": [p.name for p in selected]},
        )
        return selected
