"""GitHub REST client for reading and submitting manifests."""

from __future__ import annotations

import base64
import json
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from maniforge import observability

from .errors import (
    BranchMergeConflictError,
    ForbiddenError,
    ForgeError,
    ForgeNetworkError,
    GenericSyncError,
    NotFoundError,
    RateLimitExceededError,
    ValidationRejectedError,
)
from .models import ManifestSet
from .serialization import ManifestFormat, manifest_dir_path, render_manifest_set

logger = logging.getLogger("maniforge.forge")

API_ROOT = "https://api.github.com"
DEFAULT_OWNER = "microsoft"
DEFAULT_REPOSITORY = "winget-pkgs"

PR_TITLE_TEMPLATES = {
    "new": "New version: {id} version {version}",
    "update": "New version: {id} version {version}",
    "new-locale": "New locale: {id} version {version}",
    "update-locale": "Update locale: {id} version {version}",
}


def default_pull_request_title(kind: str, package_identifier: str, package_version: str) -> str:
    template = PR_TITLE_TEMPLATES.get(kind, PR_TITLE_TEMPLATES["update"])
    return template.format(id=package_identifier, version=package_version)


def version_sort_key(version: str) -> tuple[tuple[int, Any], ...]:
    """Order versions numerically segment by segment (``1.10`` after ``1.9``)."""
    parts = re.split(r"[.\-+_]", version)
    return tuple((0, int(part)) if part.isdigit() else (1, part.lower()) for part in parts)


@dataclass(frozen=True)
class PullRequest:
    number: int
    url: str


class Forge(Protocol):
    def find_package_id(self, fuzzy_id: str) -> str | None:
        ...

    def get_manifest_content(self, package_identifier: str, version: str | None = None) -> list[str]:
        ...

    def get_latest_version(self, package_identifier: str) -> str:
        ...

    def version_exists(self, package_identifier: str, version: str) -> bool:
        ...

    def submit_pull_request(
        self,
        manifest_set: ManifestSet,
        *,
        via_fork: bool = True,
        title: str | None = None,
        replace_version: str | None = None,
        fmt: ManifestFormat = ManifestFormat.YAML,
    ) -> PullRequest:
        ...


class GitHubClient:
    """Thin wrapper over the GitHub REST API (v3) using ``urllib``."""

    def __init__(
        self,
        token: str | None,
        owner: str = DEFAULT_OWNER,
        repository: str = DEFAULT_REPOSITORY,
        *,
        api_root: str = API_ROOT,
        opener: Callable[..., Any] = urlopen,
    ) -> None:
        self.token = token
        self.owner = owner
        self.repository = repository
        self.api_root = api_root.rstrip("/")
        self._open = opener

    # -- transport ---------------------------------------------------------

    def _request(self, method: str, path: str, payload: Any = None) -> Any:
        url = f"{self.api_root}{path}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = Request(url, data=data, method=method)
        request.add_header("Accept", "application/vnd.github+json")
        request.add_header("X-GitHub-Api-Version", "2022-11-28")
        request.add_header("User-Agent", "maniforge")
        if data is not None:
            request.add_header("Content-Type", "application/json")
        if self.token:
            request.add_header("Authorization", f"Bearer {self.token}")
        logger.debug("%s %s", method, url)
        try:
            with self._open(request) as response:
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            raise self._translate(exc, url) from exc
        except URLError as exc:
            raise ForgeNetworkError(f"Failed to reach GitHub API at {url}: {exc.reason}") from exc
        return json.loads(body) if body else None

    @staticmethod
    def _translate(exc: HTTPError, url: str) -> ForgeError:
        message = f"GitHub API error ({exc.code}) at {url}: {exc.reason}"
        if exc.code == 404:
            return NotFoundError(message, exc.code)
        if exc.code in {403, 429}:
            remaining = exc.headers.get("X-RateLimit-Remaining") if exc.headers else None
            if exc.code == 429 or remaining == "0":
                return RateLimitExceededError(message, exc.code)
            return ForbiddenError(message, exc.code)
        if exc.code == 401:
            return ForbiddenError(message, exc.code)
        if exc.code == 422:
            return ValidationRejectedError(message, exc.code)
        return ForgeError(message, exc.code)

    def _repo_path(self, owner: str | None = None, repository: str | None = None) -> str:
        return f"/repos/{owner or self.owner}/{repository or self.repository}"

    def _contents(self, path: str, owner: str | None = None) -> Any:
        return self._request("GET", f"{self._repo_path(owner)}/contents/{quote(path)}")

    def _directories(self, path: str) -> list[str]:
        entries = self._contents(path)
        if not isinstance(entries, list):
            return []
        return [entry["name"] for entry in entries if entry.get("type") == "dir"]

    # -- reading -----------------------------------------------------------

    def find_package_id(self, fuzzy_id: str) -> str | None:
        """Resolve the canonical capitalisation of an identifier, or ``None``."""
        fuzzy_id = fuzzy_id.strip()
        if not fuzzy_id:
            return None
        path = f"manifests/{fuzzy_id[0].lower()}"
        exact: list[str] = []
        try:
            for segment in fuzzy_id.split("."):
                names = self._directories(path)
                match = next((name for name in names if name.lower() == segment.lower()), None)
                if match is None:
                    return None
                exact.append(match)
                path = f"{path}/{match}"
        except NotFoundError:
            return None
        return ".".join(exact)

    def _package_path(self, package_identifier: str) -> str:
        return str(manifest_dir_path(package_identifier, "_").parent)

    def list_versions(self, package_identifier: str) -> list[str]:
        names = self._directories(self._package_path(package_identifier))
        return sorted(names, key=version_sort_key)

    def get_latest_version(self, package_identifier: str) -> str:
        versions = self.list_versions(package_identifier)
        if not versions:
            raise NotFoundError(f"No versions of {package_identifier} found", 404)
        return versions[-1]

    def version_exists(self, package_identifier: str, version: str) -> bool:
        try:
            return version in self.list_versions(package_identifier)
        except NotFoundError:
            return False

    def get_manifest_content(
        self, package_identifier: str, version: str | None = None
    ) -> list[str]:
        version = version or self.get_latest_version(package_identifier)
        directory = str(manifest_dir_path(package_identifier, version))
        entries = self._contents(directory)
        texts = []
        for entry in entries if isinstance(entries, list) else []:
            if entry.get("type") != "file":
                continue
            document = self._contents(entry["path"])
            texts.append(base64.b64decode(document["content"]).decode("utf-8-sig"))
        if not texts:
            raise NotFoundError(f"No manifests found for {package_identifier} {version}", 404)
        return texts

    # -- submission --------------------------------------------------------

    def _ensure_fork(self, login: str, default_branch: str) -> str:
        try:
            fork = self._request("GET", self._repo_path(login))
        except NotFoundError:
            logger.info("Creating fork of %s/%s", self.owner, self.repository)
            fork = self._request("POST", f"{self._repo_path()}/forks", {})
        fork_owner = fork["owner"]["login"]
        try:
            self._request(
                "POST",
                f"{self._repo_path(fork_owner, fork['name'])}/merge-upstream",
                {"branch": default_branch},
            )
        except ForgeError as exc:
            if exc.status == 409:
                raise BranchMergeConflictError(
                    f"Fork {fork_owner}/{fork['name']} has conflicts with upstream", 409
                ) from exc
            raise GenericSyncError(f"Unable to sync fork {fork_owner}/{fork['name']}: {exc}") from exc
        return fork["name"]

    def _deleted_entries(self, package_identifier: str, version: str) -> list[dict[str, Any]]:
        directory = str(manifest_dir_path(package_identifier, version))
        entries = self._contents(directory)
        if not isinstance(entries, list):
            return []
        # A null sha removes the path from the new tree.
        return [
            {"path": entry["path"], "mode": "100644", "type": "blob", "sha": None}
            for entry in entries
            if entry.get("type") == "file"
        ]

    def submit_pull_request(
        self,
        manifest_set: ManifestSet,
        *,
        via_fork: bool = True,
        title: str | None = None,
        replace_version: str | None = None,
        fmt: ManifestFormat = ManifestFormat.YAML,
    ) -> PullRequest:
        package_identifier = manifest_set.package_identifier or ""
        package_version = manifest_set.package_version or ""
        title = title or default_pull_request_title("update", package_identifier, package_version)

        upstream = self._request("GET", self._repo_path())
        default_branch = upstream["default_branch"]
        head = self._request(
            "GET", f"{self._repo_path()}/git/ref/heads/{quote(default_branch)}"
        )["object"]["sha"]

        login = self._request("GET", "/user")["login"]
        target_owner, target_repo = self.owner, self.repository
        if via_fork:
            target_owner, target_repo = login, self._ensure_fork(login, default_branch)
        target = self._repo_path(target_owner, target_repo)

        directory = manifest_dir_path(package_identifier, package_version)
        tree = [
            {"path": str(directory / name), "mode": "100644", "type": "blob", "content": text}
            for name, text in render_manifest_set(manifest_set, fmt).items()
        ]
        if replace_version:
            written = {entry["path"] for entry in tree}
            tree.extend(
                entry
                for entry in self._deleted_entries(package_identifier, replace_version)
                if entry["path"] not in written
            )

        base_tree = self._request("GET", f"{target}/git/commits/{head}")["tree"]["sha"]
        tree_sha = self._request(
            "POST", f"{target}/git/trees", {"base_tree": base_tree, "tree": tree}
        )["sha"]
        commit_sha = self._request(
            "POST",
            f"{target}/git/commits",
            {"message": title, "tree": tree_sha, "parents": [head]},
        )["sha"]
        branch = f"{package_identifier}-{package_version}-{uuid.uuid4().hex}"
        self._request(
            "POST", f"{target}/git/refs", {"ref": f"refs/heads/{branch}", "sha": commit_sha}
        )
        head_ref = f"{target_owner}:{branch}" if via_fork else branch
        pull = self._request(
            "POST",
            f"{self._repo_path()}/pulls",
            {"title": title, "head": head_ref, "base": default_branch},
        )
        result = PullRequest(number=int(pull["number"]), url=pull["html_url"])
        logger.info("Opened pull request #%d: %s", result.number, result.url)
        observability.record_pull_request(
            package_identifier, result.number, result.url, replace_version
        )
        return result
