# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Patch tools: a unified diff against one file, and the multi-file
*** Begin Patch format.

The multi-file tool validates every target and asks permission for every
change before the first byte is written, so a refusal leaves the tree
untouched.
"""

import logging
import os
from dataclasses import dataclass

from ..diff import apply_unified_diff, generate_diff, parse_unified_diff
from ..errors import DiffError, ExternalFailure, ParamError, PreconditionError
from ..patch import (
    ActionType,
    apply_commit,
    identify_files_added,
    identify_files_needed,
    patch_to_commit,
    text_to_patch,
)
from .base import BaseTool, ToolInfo, ToolResponse
from .file_ops import diagnostics_after, read_text, record_mutation, write_text
from .validation import (
    ask_permission,
    check_fresh_read,
    require_file,
    require_session,
    resolve_path,
)

logger = logging.getLogger(__name__)

MAX_PATCH_FUZZ = 3


@dataclass
class PatchParams:
    file_path: str
    patch: str


class PatchTool(BaseTool):
    """Apply a unified diff to a single file."""

    params_type = PatchParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="patch",
            description=(
                "Applies a unified diff (--- a/..., +++ b/..., @@ hunks) to a single file. "
                "Context and removed lines must match the file exactly. "
                "The file must be viewed first."
            ),
            parameters={
                "file_path": {"type": "string", "description": "The path to the file to patch"},
                "patch": {"type": "string", "description": "The unified diff to apply"},
            },
            required=["file_path", "patch"],
        )

    @staticmethod
    def _select(file_diffs, path):
        for file_diff in file_diffs:
            for name in (file_diff.new_path, file_diff.old_path):
                if name and path.endswith(name.lstrip("/")):
                    return file_diff
        return file_diffs[0]

    def execute(self, ctx, params):
        session_id = require_session(ctx)
        path = resolve_path(self.services.working_dir, params.file_path)
        require_file(path)

        old_content = read_text(path)
        check_fresh_read(self.services.ledger, path, old_content, "patching")

        try:
            file_diffs = parse_unified_diff(params.patch)
        except ParamError as error:
            raise PreconditionError(f"failed to parse patch: {error}") from error
        if not file_diffs:
            raise PreconditionError("failed to parse patch: no hunks found")

        try:
            new_content = apply_unified_diff(old_content, self._select(file_diffs, path))
        except PreconditionError as error:
            raise PreconditionError(f"failed to apply patch: {error}") from error

        if new_content == old_content:
            raise PreconditionError("patch did not result in any changes to the file")

        diff, additions, removals = generate_diff(old_content, new_content, path)
        ask_permission(
            self.services, ctx, "patch", "patch", path,
            f"Apply patch to file {path}",
            {"file_path": path, "diff": diff},
        )

        write_text(path, new_content)
        record_mutation(self.services, session_id, path, old_content, new_content)

        output = f"<result>\nPatch applied to file: {path}\n</result>\n"
        output += diagnostics_after(self.services, ctx, path)
        return ToolResponse.text(output).with_metadata({
            "diff": diff,
            "additions": additions,
            "removals": removals,
        })


@dataclass
class ApplyPatchParams:
    patch_text: str


class ApplyPatchTool(BaseTool):
    """Add, update, move and delete several files in one patch."""

    params_type = ApplyPatchParams

    def __init__(self, services):
        self.services = services

    def info(self):
        return ToolInfo(
            name="apply_patch",
            description=(
                "Applies a multi-file patch. The text starts with '*** Begin Patch' and ends with "
                "'*** End Patch'. Sections are '*** Add File: path' (every line prefixed '+'), "
                "'*** Delete File: path' and '*** Update File: path' (optionally followed by "
                "'*** Move to: path'), whose hunks start with '@@ anchor' and use ' ', '-' and '+' "
                "prefixed lines with about three lines of context. Files to update or delete "
                "must be viewed first; files to add must not exist."
            ),
            parameters={
                "patch_text": {"type": "string", "description": "The full patch text"},
            },
            required=["patch_text"],
        )

    def _resolve(self, path):
        return resolve_path(self.services.working_dir, path)

    def _permission(self, ctx, path, change):
        target = self._resolve(path)
        if change.type == ActionType.ADD:
            action, description = "create", f"Create file {target}"
        elif change.type == ActionType.DELETE:
            action, description = "delete", f"Delete file {target}"
        else:
            action, description = "patch", f"Apply patch to file {target}"

        diff, _, _ = generate_diff(change.old_content or "", change.new_content or "", target)
        ask_permission(
            self.services, ctx, "apply_patch", action, target, description,
            {"file_path": target, "diff": diff},
        )
        if change.move_path:
            destination = self._resolve(change.move_path)
            ask_permission(
                self.services, ctx, "apply_patch", "create", destination,
                f"Create file {destination}",
                {"file_path": destination, "diff": diff},
            )

    def _remove(self, path):
        try:
            os.remove(self._resolve(path))
        except OSError as error:
            raise ExternalFailure(f"failed to delete file {path}: {error}") from error

    def _check_destinations(self, commit):
        """A move must not land on a file that already exists."""
        for path, change in commit.changes.items():
            if not change.move_path:
                continue
            destination = self._resolve(change.move_path)
            if destination != self._resolve(path) and os.path.exists(destination):
                raise PreconditionError(f"file already exists: {destination}")

    def execute(self, ctx, params):
        session_id = require_session(ctx)
        text = params.patch_text

        orig = {}
        for path in identify_files_needed(text):
            target = self._resolve(path)
            require_file(target)
            content = read_text(target)
            check_fresh_read(self.services.ledger, target, content, "patching")
            orig[path] = content

        for path in identify_files_added(text):
            target = self._resolve(path)
            if os.path.exists(target):
                raise PreconditionError(f"file already exists and cannot be added: {target}")

        try:
            patch, fuzz = text_to_patch(text, orig)
        except DiffError as error:
            raise PreconditionError(f"failed to parse patch: {error}") from error
        if fuzz > MAX_PATCH_FUZZ:
            raise PreconditionError(f"patch contains fuzzy matches (fuzz level: {fuzz})")

        try:
            commit = patch_to_commit(patch, orig)
        except DiffError as error:
            raise PreconditionError(f"failed to apply patch: {error}") from error
        self._check_destinations(commit)

        # Every change is approved before anything touches the disk
        for path, change in commit.changes.items():
            self._permission(ctx, path, change)

        changed_files = []
        total_additions = 0
        total_removals = 0

        def record(path, change):
            nonlocal total_additions, total_removals
            source = self._resolve(path)
            old_content = change.old_content
            new_content = change.new_content or ""
            _, additions, removals = generate_diff(old_content or "", new_content, source)
            total_additions += additions
            total_removals += removals

            if change.type == ActionType.DELETE:
                record_mutation(self.services, session_id, source, old_content, "")
                changed_files.append(source)
                return

            destination = self._resolve(change.move_path) if change.move_path else source
            if destination != source:
                record_mutation(self.services, session_id, source, old_content, "")
                record_mutation(self.services, session_id, destination, None, new_content)
                changed_files.append(source)
            else:
                record_mutation(self.services, session_id, destination, old_content, new_content)
            changed_files.append(destination)

        try:
            apply_commit(
                commit,
                lambda path, content: write_text(self._resolve(path), content),
                self._remove,
                on_applied=record,
            )
        except ExternalFailure as error:
            if not changed_files:
                raise
            logger.warning("Patch stopped after %d files: %s", len(changed_files), error)
            raise ExternalFailure(
                f"patch partially applied; changed {', '.join(changed_files)} before: {error}"
            ) from error

        logger.info("Applied patch to %d files", len(changed_files))
        output = (
            f"Patch applied successfully. {len(changed_files)} files changed, "
            f"{total_additions} additions, {total_removals} removals"
        )
        for path in changed_files:
            if os.path.exists(path):
                output += diagnostics_after(self.services, ctx, path, include_project=False)

        return ToolResponse.text(output).with_metadata({
            "changed_files": changed_files,
            "additions": total_additions,
            "removals": total_removals,
        })
