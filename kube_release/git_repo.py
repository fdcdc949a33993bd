"""Library for identifying the commit a release is built from.

Every artifact is tagged with the identifier of the commit that produced it.
In CI the identifier is supplied by the runner (e.g. `GITHUB_SHA`); locally it
is read from the git repository that contains the source.

```python
from kube_release import git_repo

tag = git_repo.commit_id(git_repo.git_repo(Path("booker")))
```
"""

import logging
import os
from pathlib import Path

import git

from .exceptions import InputException

__all__ = [
    "git_repo",
    "repo_root",
    "commit_id",
    "source_revision",
]

_LOGGER = logging.getLogger(__name__)

COMMIT_ENV = "GITHUB_SHA"


def git_repo(path: Path | None = None) -> git.repo.Repo:
    """Return the git repository containing the path."""
    try:
        if path is None:
            return git.repo.Repo(os.getcwd(), search_parent_directories=True)
        return git.repo.Repo(str(path), search_parent_directories=True)
    except git.GitError as err:
        raise InputException(f"Unable to find git repository for {path}: {err}") from err


def repo_root(repo: git.repo.Repo | None = None) -> Path:
    """Return the root directory of the git repository."""
    if repo is None:
        repo = git_repo()
    return Path(repo.git.rev_parse("--show-toplevel"))


def commit_id(repo: git.repo.Repo) -> str:
    """Return the full identifier of the commit checked out in the repository."""
    try:
        sha = repo.head.commit.hexsha
    except ValueError as err:
        raise InputException(f"Repository {repo.working_dir} has no commits") from err
    if repo.is_dirty(untracked_files=False):
        _LOGGER.warning(
            "Working tree of %s has uncommitted changes not reflected in tag %s",
            repo.working_dir,
            sha,
        )
    return str(sha)


def source_revision(path: Path | None = None, env: dict[str, str] | None = None) -> str:
    """Return the commit identifier used to tag the artifact.

    The identifier supplied by the CI runner takes precedence over the local
    repository so that the tag matches the commit that triggered the run.
    """
    env = env if env is not None else dict(os.environ)
    if sha := env.get(COMMIT_ENV):
        _LOGGER.debug("Using commit %s from %s", sha, COMMIT_ENV)
        return sha
    return commit_id(git_repo(path))
