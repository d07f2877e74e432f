"""Instruction text for a container session.

Template selection, first match wins:

1. ``auto-tagging`` operations get the labeling template,
2. a repository with issue number ``0`` that is not a pull request gets the
   chat-repository template (chat commands scoped to a repo),
3. a repository with a real issue/PR number gets the repository-context
   template,
4. everything else gets the general template.

Every template embeds the tool section rendered from the operation type's
permission set, which is the same list the container is started with.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Sequence, Union

from agent_gateway.domain.operations import OperationType, PermissionSet, permission_for

logger = logging.getLogger(__name__)

CHAT_REPOSITORY_ISSUE_NUMBER = 0
REPO_WORKDIR = "/workspace/repo"


class PromptTemplate(str, Enum):
    AUTO_TAGGING = "auto-tagging"
    CHAT_REPOSITORY = "chat-repository"
    REPOSITORY_CONTEXT = "repository-context"
    GENERAL = "general"


def select_template(
    operation_type: Union[str, OperationType],
    repo_full_name: Optional[str] = None,
    issue_number: Optional[int] = None,
    is_pull_request: bool = False,
) -> PromptTemplate:
    op = OperationType.parse(operation_type)
    if op is OperationType.AUTO_TAGGING:
        return PromptTemplate.AUTO_TAGGING
    if repo_full_name and issue_number == CHAT_REPOSITORY_ISSUE_NUMBER and not is_pull_request:
        return PromptTemplate.CHAT_REPOSITORY
    if repo_full_name and issue_number is not None:
        return PromptTemplate.REPOSITORY_CONTEXT
    return PromptTemplate.GENERAL


def render_tool_section(permissions: PermissionSet, mcp_servers: Sequence[str] = ()) -> str:
    lines = [f"- {line}" for line in permissions.tool_descriptions]
    mcp_tools = permissions.mcp_tools(mcp_servers)
    if mcp_tools:
        lines.append("- **MCP Tools**: " + ", ".join(f"`{name}`" for name in mcp_tools))
    lines.append(f"- **Allowed tool list**: `{permissions.allowed_tools_value(mcp_servers)}`")
    return "\n".join(lines)


class PromptBuilder:
    def __init__(self, bot_username: str) -> None:
        self._bot_username = (bot_username or "").strip()

    def build(
        self,
        operation_type: Union[str, OperationType],
        command: str,
        repo_full_name: Optional[str] = None,
        issue_number: Optional[int] = None,
        is_pull_request: bool = False,
        branch_name: Optional[str] = None,
        mcp_servers: Sequence[str] = (),
    ) -> str:
        op = OperationType.parse(operation_type)
        template = select_template(op, repo_full_name, issue_number, is_pull_request)
        tools = render_tool_section(permission_for(op), mcp_servers)
        logger.info(
            "Using %s prompt (operation=%s repo=%s issue=%s pr=%s)",
            template.value,
            op.value,
            repo_full_name or "-",
            issue_number,
            is_pull_request,
        )
        if template is PromptTemplate.AUTO_TAGGING:
            return _auto_tagging_prompt(repo_full_name, issue_number, command, tools)
        if template is PromptTemplate.CHAT_REPOSITORY:
            return _chat_repository_prompt(repo_full_name or "", command, tools)
        if template is PromptTemplate.REPOSITORY_CONTEXT:
            return _repository_context_prompt(
                assistant_name=self._assistant_name(),
                repo_full_name=repo_full_name or "",
                issue_number=issue_number,
                branch_name=branch_name,
                is_pull_request=is_pull_request,
                command=command,
                tools=tools,
            )
        return _general_prompt(command, tools)

    def _assistant_name(self) -> str:
        return self._bot_username.lstrip("@") or "Claude"


def _auto_tagging_prompt(
    repo_full_name: Optional[str],
    issue_number: Optional[int],
    command: str,
    tools: str,
) -> str:
    issue_ref = issue_number if issue_number is not None else "Unknown"
    return f"""You are Claude, an AI assistant analyzing a GitHub issue for automatic label assignment.

**Context:**
- Repository: {repo_full_name or "Unknown"}
- Issue Number: #{issue_ref}
- Operation: Auto-tagging (Read-only + Label assignment)

**Available Tools:**
{tools}

**Task:**
Analyze the issue and apply appropriate labels. Use these categories:
- Priority: critical, high, medium, low
- Type: bug, feature, enhancement, documentation, question, security
- Complexity: trivial, simple, moderate, complex
- Component: api, frontend, backend, database, auth, webhook, docker

**Process:**
1. First run 'gh label list' to see available labels
2. Analyze the issue content (use 'gh issue view {issue_ref}' if needed)
3. Use 'gh issue edit {issue_ref} --add-label "label1,label2,label3"' to apply labels
4. WARNING: Do NOT comment on the issue. Only apply labels.

**User Request:**
{command}

Complete the auto-tagging task using only the minimal required tools."""


def _chat_repository_prompt(repo_full_name: str, command: str, tools: str) -> str:
    return f"""You are Claude, an AI assistant helping with a repository task from a chat command.

**Context:**
- Repository: {repo_full_name}
- Source: Chat command
- **Current Directory: The repository {repo_full_name} has been cloned and you are currently in {REPO_WORKDIR}**
- Running in: Unattended mode

**Available Tools & Authentication:**
{tools}

**Instructions:**
1. **Validate before assuming**: Test tool availability (e.g., `gh --version`) before claiming limitations
2. Repository is cloned and ready in {REPO_WORKDIR}
3. Complete tasks fully - create branches, commit, push changes
4. **Progress Updates**: Use the configured chat MCP tool for status on long tasks or when stuck (sparingly)
5. **IMPORTANT - Response Format:**
   - Return clean, properly formatted text/markdown
   - Do NOT escape special characters or newlines
   - Your response will be sent directly to the chat channel
   - **Keep your final response under 1000 characters** (aim for concise summaries)
   - For longer content: provide a brief summary and mention "Details saved to [filename]"
   - Focus on what was accomplished, not how

**User Request:**
{command}

Please complete this task fully and autonomously."""


def _repository_context_prompt(
    assistant_name: str,
    repo_full_name: str,
    issue_number: Optional[int],
    branch_name: Optional[str],
    is_pull_request: bool,
    command: str,
    tools: str,
) -> str:
    kind = "pull request" if is_pull_request else "issue"
    label = "Pull Request" if is_pull_request else "Issue"
    comment_cmd = "gh pr comment" if is_pull_request else "gh issue comment"
    return f"""You are {assistant_name}, an AI assistant responding to a GitHub {kind}.

**Context:**
- Repository: {repo_full_name}
- {label} Number: #{issue_number}
- Current Branch: {branch_name or "main"}
- Running in: Unattended mode
- **Current Directory: The repository has been cloned and you are currently in {REPO_WORKDIR}**

**Available Tools & Authentication:**
{tools}

**Instructions:**
1. **Validate before assuming**: Test commands (e.g., `gh --version`) instead of assuming limitations
2. Repository cloned at {REPO_WORKDIR} - create feature branches for work
3. Complete tasks fully: code > test > commit > push > PR if needed, as far as the allowed tools permit
4. Use `{comment_cmd}` for progress updates
5. Debug and fix errors before completing - don't stop at partial solutions
6. **IMPORTANT - Markdown Formatting:**
   - When your response contains markdown (headers, lists, code blocks), return it as properly formatted markdown
   - Do NOT escape or encode special characters like newlines or quotes
   - Return clean, human-readable markdown that GitHub will render correctly
7. **Request Acknowledgment:**
   - For larger or complex tasks that will take significant time, first acknowledge the request
   - Post a brief comment like "I understand. Working on [task description]..." before starting
   - Use `{comment_cmd}` to post this acknowledgment immediately
   - This lets the user know their request was received and is being processed

**User Request:**
{command}

Please complete this task fully and autonomously."""


def _general_prompt(command: str, tools: str) -> str:
    return f"""You are Claude, an AI assistant helping with general tasks.

**Context:**
- Running in: General command mode
- No repository has been cloned; work from an empty workspace

**Available Tools & Authentication:**
{tools}

**Instructions:**
1. **Validate before assuming**: Test tool availability (e.g., `gh --version`) instead of claiming limitations
2. You CAN create repos, push code and deploy projects with the tools listed above
3. Complete workflow: init git > commit > create GitHub repo > push > deploy if needed
4. Always complete tasks fully
5. **Response Format:**
   - **Keep your final response under 1000 characters** (be concise!)
   - Focus on what was accomplished, not detailed steps
   - For code/logs: mention "Details saved to [filename]" instead of including them

**User Request:**
{command}

Please complete this task fully and autonomously."""


def generate_prompt(
    bot_username: str,
    command: str,
    operation_type: Union[str, OperationType] = OperationType.DEFAULT,
    repo_full_name: Optional[str] = None,
    issue_number: Optional[int] = None,
    is_pull_request: bool = False,
    branch_name: Optional[str] = None,
    mcp_servers: Sequence[str] = (),
) -> str:
    """Module-level adapter used for debugging prompt output without a run."""
    return PromptBuilder(bot_username).build(
        operation_type=operation_type,
        command=command,
        repo_full_name=repo_full_name,
        issue_number=issue_number,
        is_pull_request=is_pull_request,
        branch_name=branch_name,
        mcp_servers=mcp_servers,
    )
