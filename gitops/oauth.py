"""OAuth context for provider calls made on behalf of a repository link."""

from models.data_models import Repository
from vcs.base import OauthContext


def repository_oauth_context(store, repository: Repository) -> OauthContext:
    """
    Build the OAuth context of a repository link.

    Rotated tokens are written back to the link so later calls use them.
    """
    def refresher(access_token: str, refresh_token: str, expires_ts: int) -> None:
        store.update_repository_tokens(repository.id, access_token, refresh_token, expires_ts)

    return OauthContext(
        client_id=repository.vcs.application_id if repository.vcs else "",
        client_secret=repository.vcs.secret if repository.vcs else "",
        access_token=repository.access_token,
        refresh_token=repository.refresh_token,
        refresher=refresher,
    )
