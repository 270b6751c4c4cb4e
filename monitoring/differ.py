"""
Line-based differ producing change blocks, a human title and diff markdown.
"""

import difflib
import re
from typing import List

from models.base import DiffType
from schemas.results import DiffBlock, DiffResult

HEADING_RE = re.compile(r"^#{1,6}\s+(.+)")
BULLET_LINK_RE = re.compile(r"^[-*+]\s+\[([^\]]+)\]\(([^)]+)\)")
BULLET_RE = re.compile(r"^[-*+]\s+(.+)")


class LineDiffer:
    """
    Diff two normalized contents line by line.

    Blocks that are empty after trimming are dropped, so whitespace-only
    differences produce a result with no changes.
    """

    def generate_diff(self, before: str, after: str, monitor) -> DiffResult:
        changes = self.compute_changes(before, after)
        content_type = getattr(monitor.content_type, "value", monitor.content_type) or "content"
        return DiffResult(
            diff_type=self.determine_diff_type(changes),
            summary=self.generate_summary(changes, content_type),
            diff_markdown=self.format_markdown(changes, before, after),
            changes=changes,
        )

    def compute_changes(self, before: str, after: str) -> List[DiffBlock]:
        before_lines = before.splitlines(keepends=True)
        after_lines = after.splitlines(keepends=True)
        matcher = difflib.SequenceMatcher(None, before_lines, after_lines, autojunk=False)

        blocks: List[DiffBlock] = []
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag in ("replace", "delete"):
                blocks.append(DiffBlock(type="removed", value="".join(before_lines[i1:i2]).strip()))
            if tag in ("replace", "insert"):
                blocks.append(DiffBlock(type="added", value="".join(after_lines[j1:j2]).strip()))

        return [block for block in blocks if block.value]

    def determine_diff_type(self, changes: List[DiffBlock]) -> DiffType:
        has_added = any(c.type == "added" for c in changes)
        has_removed = any(c.type == "removed" for c in changes)
        if has_added and not has_removed:
            return DiffType.ADDITION
        if has_removed and not has_added:
            return DiffType.DELETION
        return DiffType.MODIFICATION

    def generate_summary(self, changes: List[DiffBlock], content_type: str) -> str:
        """Prefer a readable title from added content; fall back to block counts."""
        added_blocks = [c for c in changes if c.type == "added"]
        for block in added_blocks:
            for line in (l.strip() for l in block.value.split("\n")):
                if not line:
                    continue
                heading = HEADING_RE.match(line)
                if heading:
                    title = re.sub(r"\s+#$", "", heading.group(1)).strip()
                    if title:
                        return title
                bullet_link = BULLET_LINK_RE.match(line)
                if bullet_link:
                    return bullet_link.group(1).strip()
                bullet = BULLET_RE.match(line)
                if bullet:
                    return bullet.group(1).strip()

        added = len(added_blocks)
        removed = sum(1 for c in changes if c.type == "removed")
        parts = []
        if added:
            parts.append(f"{added} addition{'' if added == 1 else 's'}")
        if removed:
            parts.append(f"{removed} deletion{'' if removed == 1 else 's'}")
        return f"{content_type}: {', '.join(parts) or 'No changes'}"

    def format_markdown(self, changes: List[DiffBlock], before: str, after: str) -> str:
        lines = ["# Changes Detected\n"]

        added = [c for c in changes if c.type == "added"]
        removed = [c for c in changes if c.type == "removed"]

        if added:
            lines.append("## Added\n")
            for change in added:
                lines.append("```diff")
                lines.extend(f"+ {line}" for line in change.value.split("\n"))
                lines.append("```\n")

        if removed:
            lines.append("## Removed\n")
            for change in removed:
                lines.append("```diff")
                lines.extend(f"- {line}" for line in change.value.split("\n"))
                lines.append("```\n")

        if before and after:
            patch = difflib.unified_diff(
                before.splitlines(),
                after.splitlines(),
                fromfile="before",
                tofile="after",
                lineterm="",
            )
            lines.append("## Unified Diff\n")
            lines.append("```diff")
            lines.extend(patch)
            lines.append("```\n")

        return "\n".join(lines)
