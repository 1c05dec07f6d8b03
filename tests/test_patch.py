"""Tests for the diff engine, the multi-file patch format and the patch tools."""

import json

import pytest

from coderig.diff import (
    apply_unified_diff,
    count_changes,
    generate_diff,
    parse_unified_diff,
)
from coderig.errors import DiffError, ExternalFailure, ParamError, PermissionDenied, PreconditionError
from coderig.permission import Decision
from coderig.patch import (
    ActionType,
    apply_commit,
    assemble_changes,
    identify_files_added,
    identify_files_needed,
    load_files,
    patch_to_commit,
    text_to_patch,
    validate_patch,
)
from coderig.tools.base import ToolCall
from coderig.tools.file_ops import ViewTool
from coderig.tools.patch_ops import ApplyPatchTool, PatchTool

from conftest import ScriptedResponder

UPDATE_ADD_DELETE = """*** Begin Patch
*** Update File: a.txt
@@
 one
-two
+TWO
 three
*** Add File: b.txt
+new b
*** Delete File: c.txt
*** End Patch"""


def call(name, **arguments):
    return ToolCall(id="call-1", name=name, input=json.dumps(arguments))


def view(services, ctx, path):
    return ViewTool(services).run(ctx, call("view", file_path=str(path)))


class TestUnifiedDiff:
    """generate / parse / apply."""

    def test_round_trip(self):
        before = "def f():\n    return 1\n\nprint(f())\n"
        after = "def f():\n    return 2\n\nprint(f())\nprint('done')\n"
        diff, additions, removals = generate_diff(before, after, "/src/f.py")

        assert diff.startswith("--- a/src/f.py\n+++ b/src/f.py\n")
        assert (additions, removals) == (2, 1)
        file_diff = parse_unified_diff(diff)[0]
        assert file_diff.new_path == "src/f.py"
        assert apply_unified_diff(before, file_diff) == after

    def test_round_trip_without_trailing_newline(self):
        before = "a\nb"
        after = "a\nc"
        diff, _, _ = generate_diff(before, after)
        assert apply_unified_diff(before, parse_unified_diff(diff)[0]) == after

    def test_equal_inputs(self):
        assert generate_diff("same", "same") == ("", 0, 0)

    def test_count_changes_ignores_headers(self):
        assert count_changes(["--- a/x", "+++ b/x", "+new", "-old", " ctx"]) == (1, 1)

    def test_hunks_without_file_header(self):
        files = parse_unified_diff("@@ -1 +1 @@\n-a\n+b\n")
        assert len(files) == 1
        assert apply_unified_diff("a\n", files[0]) == "b\n"

    def test_blank_context_line_without_space(self):
        patch = "@@ -1,3 +1,3 @@\n x\n\n-y\n+z\n"
        assert apply_unified_diff("x\n\ny", parse_unified_diff(patch)[0]) == "x\n\nz"

    def test_malformed_hunk_header(self):
        with pytest.raises(ParamError):
            parse_unified_diff("@@ nonsense @@\n")

    def test_context_mismatch(self):
        file_diff = parse_unified_diff("@@ -1 +1 @@\n-missing\n+b\n")[0]
        with pytest.raises(PreconditionError, match="context mismatch"):
            apply_unified_diff("a\n", file_diff)


class TestPatchFormat:
    """*** Begin Patch parsing and commits."""

    def test_identify_files(self):
        assert identify_files_needed(UPDATE_ADD_DELETE) == ["a.txt", "c.txt"]
        assert identify_files_added(UPDATE_ADD_DELETE) == ["b.txt"]

    def test_parse_and_commit(self):
        orig = {"a.txt": "one\ntwo\nthree\n", "c.txt": "c\n"}
        patch, fuzz = text_to_patch(UPDATE_ADD_DELETE, orig)
        assert fuzz == 0

        commit = patch_to_commit(patch, orig)
        assert commit.changes["a.txt"].new_content == "one\nTWO\nthree\n"
        assert commit.changes["b.txt"].type is ActionType.ADD
        assert commit.changes["b.txt"].new_content == "new b"
        assert commit.changes["c.txt"].type is ActionType.DELETE

    def test_anchor_line(self):
        text = "\n".join([
            "*** Begin Patch",
            "*** Update File: m.py",
            "@@ def second():",
            "-    return 1",
            "+    return 2",
            "*** End Patch",
        ])
        orig = {"m.py": "def first():\n    return 1\n\ndef second():\n    return 1\n"}
        patch, _ = text_to_patch(text, orig)
        updated = patch_to_commit(patch, orig).changes["m.py"].new_content
        assert updated == "def first():\n    return 1\n\ndef second():\n    return 2\n"

    def test_whitespace_fuzz_is_counted(self):
        text = "*** Begin Patch\n*** Update File: f\n@@\n a  \n-b\n+B\n*** End Patch"
        _, fuzz = text_to_patch(text, {"f": "a\nb\n"})
        assert fuzz == 1

    def test_move(self):
        text = "*** Begin Patch\n*** Update File: old.txt\n*** Move to: new.txt\n@@\n-x\n+y\n*** End Patch"
        orig = {"old.txt": "x\n"}
        patch, _ = text_to_patch(text, orig)
        commit = patch_to_commit(patch, orig)

        written, removed = {}, []
        apply_commit(commit, written.__setitem__, removed.append)
        assert written == {"new.txt": "y\n"}
        assert removed == ["old.txt"]

    def test_apply_commit_reports_each_change(self):
        orig = {"a.txt": "one\ntwo\nthree\n", "c.txt": "c\n"}
        patch, _ = text_to_patch(UPDATE_ADD_DELETE, orig)
        commit = patch_to_commit(patch, orig)

        applied = []
        apply_commit(commit, lambda path, content: None, lambda path: None,
                     on_applied=lambda path, change: applied.append((path, change.type)))
        assert applied == [
            ("a.txt", ActionType.UPDATE),
            ("b.txt", ActionType.ADD),
            ("c.txt", ActionType.DELETE),
        ]

    def test_load_files(self):
        contents = {"a.txt": "alpha"}

        def open_fn(path):
            if path not in contents:
                raise FileNotFoundError(path)
            return contents[path]

        assert load_files(["a.txt"], open_fn) == {"a.txt": "alpha"}
        with pytest.raises(DiffError, match="missing.txt"):
            load_files(["a.txt", "missing.txt"], open_fn)

    def test_missing_end_patch(self):
        with pytest.raises(DiffError):
            text_to_patch("*** Begin Patch\n*** Delete File: x", {"x": ""})

    def test_update_of_unknown_file(self):
        text = "*** Begin Patch\n*** Update File: ghost\n@@\n-a\n+b\n*** End Patch"
        with pytest.raises(DiffError, match="Missing File"):
            text_to_patch(text, {})

    def test_bad_context(self):
        text = "*** Begin Patch\n*** Update File: f\n@@\n-nothere\n+b\n*** End Patch"
        with pytest.raises(DiffError, match="Invalid Context"):
            text_to_patch(text, {"f": "a\n"})

    def test_validate_patch(self):
        orig = {"a.txt": "one\ntwo\nthree\n", "c.txt": "c\n"}
        assert validate_patch(UPDATE_ADD_DELETE, orig) == (True, "Patch is valid")
        ok, message = validate_patch(UPDATE_ADD_DELETE, {"a.txt": "one\ntwo\nthree\n"})
        assert not ok
        assert message == "File not found: c.txt"
        assert validate_patch("garbage", {})[0] is False

    def test_assemble_changes(self):
        commit = assemble_changes(
            {"keep": "k", "edit": "old", "gone": "g"},
            {"keep": "k", "edit": "new", "gone": "", "added": "a"},
        )
        assert set(commit.changes) == {"edit", "gone", "added"}
        assert commit.changes["gone"].type is ActionType.DELETE
        assert commit.changes["added"].type is ActionType.ADD


class TestPatchTool:
    """Unified diff against one file."""

    PATCH = "--- a/f.txt\n+++ b/f.txt\n@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"

    def test_applies_after_view(self, services, ctx, allow, tmp_project):
        path = tmp_project / "f.txt"
        path.write_text("a\nb\nc\n")
        view(services, ctx, path)

        response = PatchTool(services).run(ctx, call("patch", file_path=str(path), patch=self.PATCH))
        assert not response.is_error
        assert path.read_text() == "a\nB\nc\n"
        assert allow.requests[0].action == "patch"

    def test_requires_view(self, services, ctx, allow, tmp_project):
        path = tmp_project / "f.txt"
        path.write_text("a\nb\nc\n")
        response = PatchTool(services).run(ctx, call("patch", file_path=str(path), patch=self.PATCH))
        assert response.is_error
        assert "before patching it" in response.content

    def test_mismatch(self, services, ctx, allow, tmp_project):
        path = tmp_project / "f.txt"
        path.write_text("x\ny\nz\n")
        view(services, ctx, path)
        response = PatchTool(services).run(ctx, call("patch", file_path=str(path), patch=self.PATCH))
        assert response.is_error
        assert response.content.startswith("failed to apply patch")
        assert path.read_text() == "x\ny\nz\n"

    def test_no_hunks(self, services, ctx, allow, tmp_project):
        path = tmp_project / "f.txt"
        path.write_text("a\n")
        view(services, ctx, path)
        response = PatchTool(services).run(ctx, call("patch", file_path=str(path), patch="nothing"))
        assert response.content == "failed to parse patch: no hunks found"

    def test_stale_read_detected(self, services, ctx, allow, tmp_project):
        path = tmp_project / "f.txt"
        path.write_text("a\nb\nc\n")
        view(services, ctx, path)
        path.write_text("a\nb\nc\nchanged elsewhere\n")

        response = PatchTool(services).run(ctx, call("patch", file_path=str(path), patch=self.PATCH))
        assert response.is_error
        assert "has been modified since it was last read" in response.content
        assert path.read_text() == "a\nb\nc\nchanged elsewhere\n"
        assert allow.requests == []


class TestApplyPatchTool:
    """Multi-file patches."""

    @pytest.fixture
    def tree(self, services, ctx, tmp_project):
        (tmp_project / "a.txt").write_text("one\ntwo\nthree\n")
        (tmp_project / "c.txt").write_text("c\n")
        view(services, ctx, tmp_project / "a.txt")
        view(services, ctx, tmp_project / "c.txt")
        return tmp_project

    def test_applies_every_change(self, services, ctx, allow, tree):
        response = ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=UPDATE_ADD_DELETE))

        assert not response.is_error
        assert response.content.startswith("Patch applied successfully. 3 files changed")
        assert (tree / "a.txt").read_text() == "one\nTWO\nthree\n"
        assert (tree / "b.txt").read_text() == "new b"
        assert not (tree / "c.txt").exists()
        assert [request.action for request in allow.requests] == ["patch", "create", "delete"]

    def test_denial_changes_nothing(self, services, ctx, tree):
        def deny_creates(request):
            return Decision.DENY if request.action == "create" else Decision.ALLOW_ONCE

        responder = ScriptedResponder(services.permissions, deny_creates)
        try:
            with pytest.raises(PermissionDenied):
                ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=UPDATE_ADD_DELETE))
        finally:
            responder.close()

        assert (tree / "a.txt").read_text() == "one\ntwo\nthree\n"
        assert not (tree / "b.txt").exists()
        assert (tree / "c.txt").read_text() == "c\n"

    def test_unread_file_rejected(self, services, ctx, allow, tmp_project):
        (tmp_project / "a.txt").write_text("one\ntwo\nthree\n")
        (tmp_project / "c.txt").write_text("c\n")
        response = ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=UPDATE_ADD_DELETE))
        assert response.is_error
        assert "before patching it" in response.content
        assert allow.requests == []

    def test_added_file_must_not_exist(self, services, ctx, allow, tree):
        (tree / "b.txt").write_text("already here")
        response = ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=UPDATE_ADD_DELETE))
        assert response.is_error
        assert "file already exists and cannot be added" in response.content

    def test_malformed_patch(self, services, ctx, allow, tree):
        response = ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text="*** Begin Patch\nhello"))
        assert response.is_error
        assert response.content.startswith("failed to parse patch")

    def test_history_recorded(self, services, ctx, allow, tree):
        ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=UPDATE_ADD_DELETE))
        paths = {row.path for row in services.history.list_by_session(ctx.session_id)}
        assert paths == {str(tree / name) for name in ("a.txt", "b.txt", "c.txt")}

    def test_stale_read_detected(self, services, ctx, allow, tree):
        (tree / "a.txt").write_text("one\ntwo\nthree\nfour\n")
        response = ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=UPDATE_ADD_DELETE))

        assert response.is_error
        assert "has been modified since it was last read" in response.content
        assert (tree / "a.txt").read_text() == "one\ntwo\nthree\nfour\n"
        assert not (tree / "b.txt").exists()
        assert allow.requests == []

    def test_move_onto_existing_file_rejected(self, services, ctx, allow, tree):
        (tree / "b.txt").write_text("keep me\n")
        text = "*** Begin Patch\n*** Update File: a.txt\n*** Move to: b.txt\n@@\n one\n-two\n+TWO\n*** End Patch"

        response = ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=text))
        assert response.is_error
        assert response.content == f"file already exists: {tree / 'b.txt'}"
        assert (tree / "b.txt").read_text() == "keep me\n"
        assert (tree / "a.txt").read_text() == "one\ntwo\nthree\n"
        assert allow.requests == []

    def test_move_to_new_file(self, services, ctx, allow, tree):
        text = "*** Begin Patch\n*** Update File: a.txt\n*** Move to: moved.txt\n@@\n one\n-two\n+TWO\n*** End Patch"

        response = ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=text))
        assert not response.is_error
        assert not (tree / "a.txt").exists()
        assert (tree / "moved.txt").read_text() == "one\nTWO\nthree\n"
        assert response.metadata["changed_files"] == [str(tree / "a.txt"), str(tree / "moved.txt")]

    def test_partial_failure_keeps_bookkeeping(self, services, ctx, allow, tree):
        (tree / "blocker").write_text("a file, not a directory")
        text = "\n".join([
            "*** Begin Patch",
            "*** Update File: a.txt",
            "@@",
            " one",
            "-two",
            "+TWO",
            "*** Add File: blocker/new.txt",
            "+x",
            "*** End Patch",
        ])

        with pytest.raises(ExternalFailure) as exc_info:
            ApplyPatchTool(services).run(ctx, call("apply_patch", patch_text=text))

        message = str(exc_info.value)
        assert message.startswith(f"patch partially applied; changed {tree / 'a.txt'} before:")
        assert str(tree / "blocker" / "new.txt") in message
        assert (tree / "a.txt").read_text() == "one\nTWO\nthree\n"
        rows = services.history.list_by_session(ctx.session_id)
        assert {row.path for row in rows} == {str(tree / "a.txt")}
        assert services.ledger.last_write(str(tree / "a.txt")) > 0
