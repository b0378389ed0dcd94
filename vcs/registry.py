"""Select the provider implementation for a VCS type."""

from models.vcs_models import VCSType
from vcs.base import VCSProvider
from vcs.github import GitHubProvider
from vcs.gitlab import GitLabProvider

PROVIDERS = {
    VCSType.GITHUB_COM: GitHubProvider,
    VCSType.GITLAB_SELF_HOST: GitLabProvider,
}


def get_provider(vcs_type: VCSType, timeout: float = 30.0) -> VCSProvider:
    """
    Build the provider for vcs_type.

    Raises:
        ValueError: If the VCS type is not supported
    """
    try:
        provider_class = PROVIDERS[VCSType(vcs_type)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported VCS type: {vcs_type}")
    return provider_class(timeout=timeout)
