"""
Unit tests for data models.
"""

import pytest
from pydantic import ValidationError

from scaffold_sync.models import (
    ChangeType,
    Entity,
    EntityRefError,
    ErrorRecord,
    FileChange,
    FileChangeSet,
    FileSnapshot,
    RepositoryLocation,
    SyncReport,
    SyncResult,
    SyncStatus,
    TemplateInfo,
    normalize_entity_ref,
    parse_entity_ref,
)
from datetime import datetime, timezone


class TestEntityRefs:
    """Test entity reference parsing."""

    def test_parse_full_ref(self):
        assert parse_entity_ref("Component:team-a/svc") == ("component", "team-a", "svc")

    def test_parse_applies_defaults(self):
        assert parse_entity_ref("svc", default_kind="group") == ("group", "default", "svc")
        assert parse_entity_ref("user:jdoe", default_namespace="ns") == ("user", "ns", "jdoe")

    def test_parse_without_kind_fails(self):
        with pytest.raises(EntityRefError):
            parse_entity_ref("default/svc")

    @pytest.mark.parametrize("ref", ["", "   ", "component:", "component:ns/"])
    def test_parse_malformed(self, ref):
        with pytest.raises(EntityRefError):
            parse_entity_ref(ref)

    def test_normalize(self):
        assert normalize_entity_ref("Template:my-template") == "template:default/my-template"


class TestEntity:
    """Test catalog entity model."""

    def test_from_catalog_document(self):
        entity = Entity.model_validate({
            "apiVersion": "backstage.io/v1alpha1",
            "kind": "Component",
            "metadata": {
                "name": "svc",
                "title": "My Service",
                "annotations": {"github.com/project-slug": "org/svc"},
            },
            "spec": {"owner": "user:jdoe", "type": "service"},
        })

        assert entity.ref == "component:default/svc"
        assert entity.display_name == "My Service"
        assert entity.owner_ref == "user:jdoe"
        assert entity.annotation("github.com/project-slug") == "org/svc"
        assert entity.annotation("missing") is None

    def test_display_name_falls_back_to_name(self):
        entity = Entity(kind="Template", metadata={"name": "tpl"})

        assert entity.display_name == "tpl"
        assert entity.owner_ref is None


class TestRepositoryLocation:
    """Test repository location model."""

    def test_requires_owner_and_repo(self):
        with pytest.raises(ValidationError):
            RepositoryLocation(host="github.com", owner="", repo="r")
        with pytest.raises(ValidationError):
            RepositoryLocation(host="github.com", owner="o", repo="")

    def test_slug(self):
        assert RepositoryLocation(host="github.com", owner="o", repo="r").slug == "o/r"
        assert RepositoryLocation(host="dev.azure.com", owner="org", project="p", repo="r").slug == "org/p/r"

    def test_qualify(self):
        root = RepositoryLocation(host="github.com", owner="o", repo="r")
        nested = RepositoryLocation(host="github.com", owner="o", repo="r", path="/services/api/")

        assert root.qualify("a.txt") == "a.txt"
        assert nested.qualify("a.txt") == "services/api/a.txt"

    def test_frozen(self):
        location = RepositoryLocation(host="github.com", owner="o", repo="r")
        with pytest.raises(ValidationError):
            location.owner = "x"


class TestFileChanges:
    """Test file change models."""

    def test_delete_has_no_content(self):
        FileChange(file_path="a", change_type=ChangeType.DELETE)
        with pytest.raises(ValidationError):
            FileChange(file_path="a", change_type=ChangeType.DELETE, content="x")

    def test_edit_requires_content(self):
        with pytest.raises(ValidationError):
            FileChange(file_path="a", change_type=ChangeType.EDIT)

    def test_change_set_mapping(self):
        changes = FileChangeSet()
        assert changes.is_empty()
        assert not changes

        changes.add(FileChange(file_path="a.txt", change_type=ChangeType.EDIT, content="new"))
        changes.add(FileChange(file_path="old.txt", change_type=ChangeType.DELETE))

        assert len(changes) == 2
        assert "a.txt" in changes
        assert changes["a.txt"].content == "new"
        assert changes.files() == {"a.txt": "new", "old.txt": None}
        assert sorted(changes) == ["a.txt", "old.txt"]

    def test_snapshot_is_read_only_mapping(self):
        source = {"a.txt": "x"}
        snapshot = FileSnapshot(source, source_url="https://github.com/o/r")
        source["b.txt"] = "y"

        assert dict(snapshot) == {"a.txt": "x"}
        assert snapshot.source_url == "https://github.com/o/r"
        with pytest.raises(TypeError):
            snapshot["a.txt"] = "z"


class TestSyncReport:
    """Test sync outcome models."""

    def test_views(self):
        report = SyncReport(run_id="sync_1", template_ref="template:default/t")
        error = ErrorRecord(
            phase="fetch_target_files",
            error_type="FetchError",
            message="not found",
            timestamp=datetime.now(timezone.utc)
        )

        report.record(SyncResult.created("component:default/a", "https://github.com/o/a/pull/1"))
        report.record(SyncResult.skipped("component:default/b", "no drift from template"))
        report.record(SyncResult.failed("component:default/c", error))

        assert [r.entity_ref for r in report.created] == ["component:default/a"]
        assert [r.entity_ref for r in report.skipped] == ["component:default/b"]
        assert report.failed[0].reason == "not found"
        assert report.failed[0].status == SyncStatus.FAILED
        assert report.pull_request_urls() == {"component:default/a": "https://github.com/o/a/pull/1"}

    def test_template_info_frozen(self):
        info = TemplateInfo(owner="o", repo="r", display_name="T", component_name="svc")

        assert info.previous_version is None
        with pytest.raises(ValidationError):
            info.owner = "x"
