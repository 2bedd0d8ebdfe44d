"""Tests for package descriptors."""

import dataclasses
from pathlib import Path

import pytest

from common.errors import DescriptorError
from packages.descriptor import PackageDescriptor, PackageKind, Requirement, sort_by_version
from versioning import VersionVector, ZERO


class TestPackageKind:
    def test_parse(self):
        assert PackageKind.parse("tar") is PackageKind.TAR
        assert PackageKind.parse("SINGLE") is PackageKind.SINGLE
        assert PackageKind.parse(PackageKind.DIR) is PackageKind.DIR

    def test_unknown_kind_rejected_at_construction(self):
        with pytest.raises(DescriptorError):
            PackageDescriptor.create("foo", "1.0", kind="zip")

    def test_artifact_suffix(self):
        assert PackageKind.TAR.artifact_suffix == ".tar"
        assert PackageKind.SINGLE.artifact_suffix == ".el"
        with pytest.raises(DescriptorError):
            PackageKind.BUILTIN.artifact_suffix


class TestPackageDescriptor:
    def test_create(self):
        desc = PackageDescriptor.create("foo", "1.0", requirements=[("bar", "2.0")], kind="tar")
        assert desc.version == VersionVector.parse("1.0")
        assert desc.requirements == (Requirement.of("bar", "2.0"),)
        assert desc.full_name == "foo-1.0"
        assert desc.dirname == "foo-1.0"
        assert desc.artifact_name() == "foo-1.0.tar"
        assert desc.key == ("foo", VersionVector.parse("1"))

    def test_builtin_has_no_artifact(self):
        desc = PackageDescriptor.create("emacs", "29.1", kind="builtin")
        assert desc.is_builtin
        with pytest.raises(DescriptorError):
            desc.artifact_name()

    def test_empty_name_rejected(self):
        with pytest.raises(DescriptorError):
            PackageDescriptor.create("", "1.0")

    @pytest.mark.parametrize("name", ["../../escaped", "a/b", "a\\b", ".hidden", "foo..bar", "..", "nul\0"])
    def test_path_like_name_rejected(self, name):
        with pytest.raises(DescriptorError):
            PackageDescriptor.create(name, "1.0")

    @pytest.mark.parametrize("name", ["foo", "c++-mode", "org.el-contrib", "ace_jump"])
    def test_ordinary_names_accepted(self, name):
        assert PackageDescriptor.create(name, "1.0").name == name

    def test_immutable(self):
        desc = PackageDescriptor.create("foo", "1.0")
        with pytest.raises(dataclasses.FrozenInstanceError):
            desc.name = "bar"

    def test_extras_do_not_affect_equality(self):
        a = PackageDescriptor.create("foo", "1.0", extras={"url": "https://a"})
        b = PackageDescriptor.create("foo", "1.0", extras={"url": "https://b"})
        assert a == b
        assert hash(a) == hash(b)

    def test_with_install_dir(self, tmp_path):
        desc = PackageDescriptor.create("foo", "1.0")
        installed = desc.with_install_dir(tmp_path, signed=True)
        assert installed.install_dir == tmp_path
        assert installed.signed
        assert desc.install_dir is None
        assert desc.with_install_dir(str(tmp_path)).install_dir == Path(tmp_path)

    def test_requirement_for(self):
        desc = PackageDescriptor.create("foo", "1.0", requirements=[("bar", "2.0")])
        assert desc.requirement_for("bar").min_version == VersionVector.parse("2.0")
        assert desc.requirement_for("baz") is None

    def test_host_requirement(self):
        desc = PackageDescriptor.create("foo", "1.0", requirements=[("emacs", "26.1"), ("bar", "1")])
        assert desc.host_requirement("emacs").min_version == VersionVector.parse("26.1")
        assert PackageDescriptor.create("bar", "1").host_requirement("emacs") is None

    def test_sort_by_version(self):
        descs = [PackageDescriptor.create("foo", ver) for ver in ("1.0", "2.0", "1.5")]
        assert [str(d.version) for d in sort_by_version(descs)] == ["2.0", "1.5", "1.0"]


class TestRequirement:
    def test_any_version(self):
        req = Requirement.of("bar")
        assert req.min_version == ZERO
        assert req.satisfied_by(VersionVector.parse("0.1"))

    def test_satisfied_by(self):
        req = Requirement.of("bar", "2.0")
        assert req.satisfied_by(VersionVector.parse("2"))
        assert not req.satisfied_by(VersionVector.parse("1.9"))
        assert str(req) == "bar-2.0"
