"""GitHub issue tracker via the gh CLI.

Lists repositories, labels, issues and pull requests for an organisation,
keeps repository labels in line with the configured set, and reads issue
timelines for label history. Every call shells out to `gh`, which handles
authentication.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from datetime import timedelta

from kanban.sources.base import (
    LabelSyncResult,
    RawIssue,
    RawLabel,
    RawPullRequest,
    TimelineEvent,
    TrackerError,
)
from kanban.utils.timeutil import parse_iso, utcnow

logger = logging.getLogger(__name__)

# gh JSON fields we request for issue and PR listings
_ISSUE_FIELDS = "number,title,state,createdAt,updatedAt,closedAt,labels,assignees"
_PR_FIELDS = (
    "number,title,state,isDraft,createdAt,updatedAt,mergedAt,closedAt,author,"
    "additions,deletions,changedFiles,body"
)

_REPO_LIMIT = 500
_TIMEOUT_SECONDS = 60

# "Closes #12", "fixes #3", "Resolved #40"
_CLOSING_REF = re.compile(r"\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\s+#(\d+)", re.IGNORECASE)

_LINKED_ISSUES_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      closingIssuesReferences(first: 25) { nodes { number } }
    }
  }
}
"""


class GitHubSourceError(TrackerError):
    """Raised when a GitHub source operation fails."""


class GitHubSource:
    """IssueTracker implementation backed by the gh CLI."""

    def __init__(self, timeout: int = _TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    def list_repositories(self, org: str) -> list[str]:
        cmd = [
            "gh", "repo", "list", org,
            "--limit", str(_REPO_LIMIT),
            "--json", "name",
            "--no-archived",
        ]
        return sorted(r["name"] for r in self._run_gh(cmd) if r.get("name"))

    def list_labels(self, org: str, repo: str) -> list[RawLabel]:
        cmd = [
            "gh", "label", "list",
            "--repo", f"{org}/{repo}",
            "--json", "name,color,description",
            "--limit", "200",
        ]
        return [
            RawLabel(
                name=lbl.get("name", ""),
                color=(lbl.get("color") or "").lstrip("#").lower(),
                description=lbl.get("description") or "",
            )
            for lbl in self._run_gh(cmd)
        ]

    def sync_labels(self, org: str, repo: str, labels: list[RawLabel]) -> LabelSyncResult:
        """Create missing labels and edit differing ones. Identical labels cost no calls."""
        result = LabelSyncResult()
        current = {lbl.name: lbl for lbl in self.list_labels(org, repo)}
        repo_path = f"{org}/{repo}"

        for label in labels:
            color = label.color.lstrip("#").lower()
            existing = current.get(label.name)
            if existing is None:
                action = "create"
            elif existing.color != color or existing.description != label.description:
                action = "edit"
            else:
                result.unchanged.append(label.name)
                continue

            cmd = ["gh", "label", action, label.name, "--repo", repo_path, "--color", color]
            if label.description:
                cmd.extend(["--description", label.description])
            self._exec_gh(cmd)
            (result.created if action == "create" else result.updated).append(label.name)

        logger.debug(
            "Labels for %s: %d created, %d updated, %d unchanged",
            repo_path, len(result.created), len(result.updated), len(result.unchanged),
        )
        return result

    def list_issues(self, org: str, repo: str, limit: int = 500) -> list[RawIssue]:
        cmd = [
            "gh", "issue", "list",
            "--repo", f"{org}/{repo}",
            "--state", "all",
            "--json", _ISSUE_FIELDS,
            "--limit", str(limit),
        ]
        return _convert(self._run_gh(cmd), _to_raw_issue, "issue")

    def list_closed_issues(self, org: str, repo: str, days: int) -> list[RawIssue]:
        """Issues closed in the last ``days`` days, past the cap of the general listing."""
        since = (utcnow() - timedelta(days=days)).strftime("%Y-%m-%d")
        cmd = [
            "gh", "issue", "list",
            "--repo", f"{org}/{repo}",
            "--state", "closed",
            "--json", _ISSUE_FIELDS,
            "--limit", "500",
            # gh uses --search for date filters with GitHub search syntax
            "--search", f"closed:>={since}",
        ]
        return _convert(self._run_gh(cmd), _to_raw_issue, "issue")

    def list_pull_requests(self, org: str, repo: str, limit: int = 200) -> list[RawPullRequest]:
        cmd = [
            "gh", "pr", "list",
            "--repo", f"{org}/{repo}",
            "--state", "all",
            "--json", _PR_FIELDS,
            "--limit", str(limit),
        ]
        return _convert(self._run_gh(cmd), _to_raw_pr, "PR")

    def get_linked_issues(self, org: str, repo: str, pr_number: int) -> list[int]:
        """Issues a PR closes, from GraphQL; falls back to parsing the PR body."""
        cmd = [
            "gh", "api", "graphql",
            "-f", f"query={_LINKED_ISSUES_QUERY}",
            "-F", f"owner={org}",
            "-F", f"name={repo}",
            "-F", f"number={pr_number}",
        ]
        try:
            data = self._run_gh_single(cmd)
            pr = ((data.get("data") or {}).get("repository") or {}).get("pullRequest") or {}
            nodes = (pr.get("closingIssuesReferences") or {}).get("nodes") or []
            return sorted({n["number"] for n in nodes if n.get("number")})
        except GitHubSourceError as e:
            logger.debug("GraphQL lookup for PR #%d failed (%s), parsing body", pr_number, e)

        body_cmd = ["gh", "pr", "view", str(pr_number), "--repo", f"{org}/{repo}", "--json", "body"]
        body = self._run_gh_single(body_cmd).get("body") or ""
        return parse_closing_refs(body)

    def get_timeline(self, org: str, repo: str, number: int) -> list[TimelineEvent]:
        """Label add/remove events for one issue, in feed order."""
        cmd = ["gh", "api", f"repos/{org}/{repo}/issues/{number}/timeline", "--paginate"]
        events: list[TimelineEvent] = []
        for raw in _decode_pages(self._exec_gh(cmd)):
            if raw.get("event") not in ("labeled", "unlabeled"):
                continue
            label = (raw.get("label") or {}).get("name")
            at = parse_iso(raw.get("created_at"))
            if not label or at is None:
                continue
            events.append(TimelineEvent(event=raw["event"], label=label, created_at=at))
        return events

    # -- Internal helpers --

    def _run_gh(self, cmd: list[str]) -> list[dict]:
        """Run a gh command that returns a JSON array."""
        raw = self._exec_gh(cmd)
        data = _load_json(raw) if raw.strip() else []
        if not isinstance(data, list):
            return [data] if data else []
        return data

    def _run_gh_single(self, cmd: list[str]) -> dict:
        """Run a gh command that returns a single JSON object."""
        data = _load_json(self._exec_gh(cmd))
        if isinstance(data, list):
            if not data:
                raise GitHubSourceError("Empty response from gh")
            return data[0]
        return data

    def _exec_gh(self, cmd: list[str]) -> str:
        """Execute a gh CLI command and return stdout."""
        logger.debug("Running %s", " ".join(cmd[:4]))
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout,
            )
        except FileNotFoundError:
            raise GitHubSourceError(
                "gh CLI not found. Install it: https://cli.github.com/"
            )
        except subprocess.TimeoutExpired:
            raise GitHubSourceError(f"gh command timed out after {self.timeout} seconds")

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if "auth login" in stderr or "not logged" in stderr.lower():
                raise GitHubSourceError(
                    f"gh authentication required. Run: gh auth login\n{stderr}"
                )
            if "rate limit" in stderr.lower():
                raise GitHubSourceError(f"GitHub rate limit hit: {stderr}")
            raise GitHubSourceError(f"gh command failed: {stderr}")

        return result.stdout


# -- Module-level helpers --


def _convert(items: list[dict], fn, kind: str) -> list:
    """Convert gh records, skipping malformed ones."""
    converted = []
    for obj in items:
        try:
            converted.append(fn(obj))
        except (KeyError, TypeError, ValueError, GitHubSourceError) as e:
            logger.warning("Skipping malformed %s record %s: %s", kind, obj.get("number", "?"), e)
    return converted


def parse_closing_refs(body: str) -> list[int]:
    """Issue numbers referenced as 'closes #n', 'fixes #n' or 'resolves #n'."""
    return sorted({int(m) for m in _CLOSING_REF.findall(body or "") if int(m) > 0})


def _load_json(raw: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise GitHubSourceError(f"Malformed JSON from gh: {e}") from e


def _decode_pages(raw: str) -> list[dict]:
    """Flatten `gh api --paginate` output, which prints one JSON array per page."""
    decoder = json.JSONDecoder()
    items: list[dict] = []
    pos = 0
    raw = raw.strip()
    while pos < len(raw):
        try:
            page, pos = decoder.raw_decode(raw, pos)
        except json.JSONDecodeError as e:
            raise GitHubSourceError(f"Malformed JSON page from gh: {e}") from e
        if isinstance(page, list):
            items.extend(page)
        elif page:
            items.append(page)
        while pos < len(raw) and raw[pos].isspace():
            pos += 1
    return items


def _first_assignee(obj: dict) -> str | None:
    assignees = obj.get("assignees") or []
    if assignees and isinstance(assignees[0], dict):
        return assignees[0].get("login")
    return None


def _get_author_login(obj: dict) -> str:
    """Extract author login from an issue or PR dict."""
    author = obj.get("author", {})
    if isinstance(author, dict):
        return author.get("login", "unknown")
    if isinstance(author, str):
        return author
    return "unknown"


def _to_raw_issue(obj: dict) -> RawIssue:
    created = parse_iso(obj.get("createdAt"))
    if created is None:
        raise GitHubSourceError(f"Issue #{obj.get('number')} has no createdAt")
    return RawIssue(
        number=int(obj["number"]),
        title=obj.get("title") or "",
        state=(obj.get("state") or "open").lower(),
        created_at=created,
        updated_at=parse_iso(obj.get("updatedAt")) or created,
        closed_at=parse_iso(obj.get("closedAt")),
        labels=[lbl["name"] for lbl in obj.get("labels") or [] if lbl.get("name")],
        assignee=_first_assignee(obj),
    )


def _to_raw_pr(obj: dict) -> RawPullRequest:
    created = parse_iso(obj.get("createdAt"))
    if created is None:
        raise GitHubSourceError(f"PR #{obj.get('number')} has no createdAt")
    return RawPullRequest(
        number=int(obj["number"]),
        title=obj.get("title") or "",
        state=(obj.get("state") or "open").lower(),
        created_at=created,
        updated_at=parse_iso(obj.get("updatedAt")) or created,
        merged_at=parse_iso(obj.get("mergedAt")),
        closed_at=parse_iso(obj.get("closedAt")),
        author=_get_author_login(obj),
        is_draft=bool(obj.get("isDraft")),
        additions=obj.get("additions") or 0,
        deletions=obj.get("deletions") or 0,
        changed_files=obj.get("changedFiles") or 0,
        body=obj.get("body") or "",
    )
