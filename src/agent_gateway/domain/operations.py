"""Operation types and the tool permissions each one grants.

The operation type alone decides which tools the container may use. The
prompt text and the container's ``ALLOWED_TOOLS`` variable are both rendered
from the same :class:`PermissionSet`, so they cannot drift apart.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Tuple, Union


class OperationType(str, Enum):
    DEFAULT = "default"
    GITHUB_CONTEXT = "github-context"
    AUTO_TAGGING = "auto-tagging"
    PR_REVIEW = "pr-review"
    MANUAL_PR_REVIEW = "manual-pr-review"
    DISCORD_REPOSITORY = "discord-repository"

    @classmethod
    def parse(cls, value: Union[str, "OperationType", None]) -> "OperationType":
        if isinstance(value, cls):
            return value
        normalized = (value or "").strip().lower()
        if not normalized:
            return cls.DEFAULT
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown operation type: {value!r}") from None


@dataclass(frozen=True)
class PermissionSet:
    name: str
    allowed_tools: Tuple[str, ...]
    tool_descriptions: Tuple[str, ...]
    allow_mcp_tools: bool

    def mcp_tools(self, mcp_servers: Iterable[str] = ()) -> Tuple[str, ...]:
        if not self.allow_mcp_tools:
            return ()
        names = sorted({s.strip() for s in mcp_servers if s and s.strip()})
        return tuple(f"mcp__{name}" for name in names)

    def tool_list(self, mcp_servers: Iterable[str] = ()) -> Tuple[str, ...]:
        return self.allowed_tools + self.mcp_tools(mcp_servers)

    def allowed_tools_value(self, mcp_servers: Iterable[str] = ()) -> str:
        return ",".join(self.tool_list(mcp_servers))


FULL_ACCESS = PermissionSet(
    name="full",
    allowed_tools=("Bash", "Create", "Edit", "Read", "Write", "GitHub"),
    tool_descriptions=(
        "**GitHub CLI**: Full access - repos, issues, PRs, API operations",
        "**Git**: Version control, branching, commits, push/pull",
        "**File System**: Create, Read, Write, Edit files and directories",
        "**Shell**: Execute bash commands (including `vercel` when authenticated)",
    ),
    allow_mcp_tools=True,
)

LABELING = PermissionSet(
    name="labeling",
    allowed_tools=(
        "Read",
        "GitHub",
        "Bash(gh issue edit:*)",
        "Bash(gh issue view:*)",
        "Bash(gh label list:*)",
    ),
    tool_descriptions=(
        "**Read**: Access repository files and issue content",
        "**GitHub**: Use `gh label list`, `gh issue view` and `gh issue edit --add-label` only",
    ),
    allow_mcp_tools=False,
)

REVIEW = PermissionSet(
    name="review",
    allowed_tools=(
        "Read",
        "GitHub",
        "Bash(gh:*)",
        "Bash(git log:*)",
        "Bash(git show:*)",
        "Bash(git diff:*)",
        "Bash(git blame:*)",
        "Bash(find:*)",
        "Bash(grep:*)",
        "Bash(rg:*)",
        "Bash(cat:*)",
        "Bash(head:*)",
        "Bash(tail:*)",
        "Bash(ls:*)",
        "Bash(tree:*)",
    ),
    tool_descriptions=(
        "**Read**: Full read access to repository files",
        "**Git history**: `git log`, `git show`, `git diff`, `git blame`",
        "**Search**: `find`, `grep`, `rg`, `cat`, `head`, `tail`, `ls`, `tree`",
        "**GitHub CLI**: Comments, reviews and labels via `gh` (no file modification)",
    ),
    allow_mcp_tools=True,
)

PERMISSION_SETS: Dict[OperationType, PermissionSet] = {
    OperationType.DEFAULT: FULL_ACCESS,
    OperationType.GITHUB_CONTEXT: FULL_ACCESS,
    OperationType.DISCORD_REPOSITORY: FULL_ACCESS,
    OperationType.AUTO_TAGGING: LABELING,
    OperationType.PR_REVIEW: REVIEW,
    OperationType.MANUAL_PR_REVIEW: REVIEW,
}


def permission_for(operation_type: Union[str, OperationType]) -> PermissionSet:
    return PERMISSION_SETS[OperationType.parse(operation_type)]
