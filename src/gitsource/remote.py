"""Remote URL parsing and the GitRemote node.

Handles the URL shapes git accepts:
- git@github.com:org/repo.git (scp-like SSH)
- https://github.com/org/repo.git, ssh://git@host:2222/org/repo
- /srv/git/repo.git, file:///srv/git/repo.git (local paths)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

NODE_TYPE = "GitRemote"


@dataclass(frozen=True)
class ParsedRemote:
    """Components of a git remote URL.

    Attributes:
        protocol: "https", "http", "ssh", "git" or "file"
        resource: Host name ("" for local paths)
        port: Explicit port, if any
        user: User part of the URL, if any
        pathname: Path portion with leading slash
        owner: Namespace (e.g. "org" or "group/subgroup"), "" when absent
        name: Repository name without .git suffix
        full_name: "owner/name", or just "name"
        href: The URL as given
    """
    protocol: str
    resource: str
    port: Optional[int]
    user: Optional[str]
    pathname: str
    owner: str
    name: str
    full_name: str
    href: str


@dataclass(frozen=True)
class RemoteDescriptor:
    """Identity of the remote repository for one sourcing session."""
    id: str
    source_instance_name: str
    remote: ParsedRemote
    web_link: str
    content_digest: str

    node_type = NODE_TYPE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.node_type
        return data


def _strip_repo_suffix(value: str) -> str:
    """Strip .git suffix and trailing slashes from a path."""
    value = value.strip().rstrip("/")
    if value.endswith(".git"):
        value = value[:-4]
    return value.rstrip("/")


def _split_namespace_repo(slug: str) -> tuple[str, str]:
    """Split "group/subgroup/repo" into ("group/subgroup", "repo")."""
    parts = [p for p in slug.split("/") if p]
    if not parts:
        return "", ""
    return "/".join(parts[:-1]), parts[-1]


def parse_remote_url(url: str) -> ParsedRemote:
    """Parse a git remote URL into its components.

    Raises:
        ValueError: If no repository name can be extracted
    """
    raw = url.strip()
    if not raw:
        raise ValueError("Remote URL is empty")

    user: Optional[str] = None
    port: Optional[int] = None

    if "://" in raw:
        parts = urlsplit(raw)
        protocol = parts.scheme.lower()
        resource = parts.hostname or ""
        user = parts.username
        port = parts.port
        pathname = parts.path or "/"
    elif ":" in raw.split("/", 1)[0] and not raw.startswith("/"):
        # scp-like syntax: [user@]host:path
        host_part, pathname = raw.split(":", 1)
        protocol = "ssh"
        if "@" in host_part:
            user, resource = host_part.split("@", 1)
        else:
            resource = host_part
        pathname = "/" + pathname.lstrip("/")
    else:
        protocol = "file"
        resource = ""
        pathname = raw

    owner, name = _split_namespace_repo(_strip_repo_suffix(pathname))
    if not name:
        raise ValueError(f"Cannot determine repository name from remote URL: {url!r}")

    if protocol == "file":
        # Local paths have no meaningful owner
        owner = ""
    full_name = f"{owner}/{name}" if owner else name

    return ParsedRemote(
        protocol=protocol,
        resource=resource,
        port=port,
        user=user,
        pathname=pathname,
        owner=owner,
        name=name,
        full_name=full_name,
        href=raw,
    )


def web_link(parsed: ParsedRemote) -> str:
    """Canonical https link for a hosted remote; the raw URL otherwise."""
    if not parsed.resource:
        return parsed.href
    return f"https://{parsed.resource}/{parsed.full_name}"


def build_remote_descriptor(name: str, url: str, sink) -> RemoteDescriptor:
    """Create the RemoteDescriptor for a session, using the sink for ids and digests."""
    parsed = parse_remote_url(url)
    link = web_link(parsed)
    return RemoteDescriptor(
        id=sink.allocate_id(f"git-remote-{name}"),
        source_instance_name=name,
        remote=parsed,
        web_link=link,
        content_digest=sink.digest({**asdict(parsed), "web_link": link}),
    )
