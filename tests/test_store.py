"""Tests for the descriptor store."""

import pytest

from packages.description import write_description_file
from packages.descriptor import PackageDescriptor
from packages.store import DescriptorStore, load_installed_descriptor
from registry.sources import ArchiveSource
from versioning import VersionVector


def avail(name, version, archive, requires=()):
    return PackageDescriptor.create(name, version, requirements=requires, archive=archive, kind="tar")


def installed(name, version, tmp_path, requires=()):
    return PackageDescriptor.create(
        name, version, requirements=requires, kind="tar", install_dir=tmp_path / f"{name}-{version}"
    )


@pytest.fixture
def archives():
    return [ArchiveSource("gnu", "/srv/gnu"), ArchiveSource("melpa", "/srv/melpa")]


class TestAvailable:
    def test_first_listed_archive_wins(self, archives):
        store = DescriptorStore(archives=archives)
        store.replace_available({
            "melpa": [avail("foo", "2.0", "melpa")],
            "gnu": [avail("foo", "1.0", "gnu")],
        })
        assert [(d.archive, str(d.version)) for d in store.available_for("foo")] == [
            ("gnu", "1.0"),
            ("melpa", "2.0"),
        ]

    def test_priority_overrides_order(self):
        store = DescriptorStore(archives=[
            ArchiveSource("gnu", "/srv/gnu"),
            ArchiveSource("melpa", "/srv/melpa", priority=10),
        ])
        store.replace_available({
            "gnu": [avail("foo", "1.0", "gnu")],
            "melpa": [avail("foo", "2.0", "melpa")],
        })
        assert store.available_for("foo")[0].archive == "melpa"

    def test_same_archive_sorted_by_decreasing_version(self, archives):
        store = DescriptorStore(archives=archives)
        store.replace_available({"gnu": [avail("bar", "1.5", "gnu"), avail("bar", "2.1", "gnu")]})
        assert [str(d.version) for d in store.available_for("bar")] == ["2.1", "1.5"]

    def test_pinned_package_only_from_its_archive(self, archives):
        store = DescriptorStore(archives=archives, pinned={"foo": "melpa"})
        store.replace_available({
            "gnu": [avail("foo", "1.0", "gnu"), avail("bar", "1.0", "gnu")],
            "melpa": [avail("foo", "2.0", "melpa")],
        })
        assert [d.archive for d in store.available_for("foo")] == ["melpa"]
        assert store.find_available("bar") is not None

    def test_replace_is_whole_unit(self, archives):
        store = DescriptorStore(archives=archives)
        store.replace_available({"gnu": [avail("foo", "1.0", "gnu")]})
        store.replace_available({"melpa": [avail("bar", "1.0", "melpa")]})
        assert store.available_for("foo") == []
        assert list(store.archive_indexes()) == ["melpa"]


class TestBuiltinAndInstalled:
    def test_host_is_builtin(self):
        store = DescriptorStore(host_name="emacs", host_version="29.1")
        assert store.builtin_p("emacs")
        assert store.installed_p("emacs", VersionVector.parse("28"))
        assert not store.installed_p("emacs", VersionVector.parse("30"))

    def test_set_builtins(self):
        store = DescriptorStore()
        store.set_builtins({"seq": "2.23"})
        assert store.builtin_p("seq", VersionVector.parse("2.0"))
        assert store.builtin_p("emacs")

    def test_add_and_remove_installed(self, tmp_path):
        store = DescriptorStore()
        old = installed("foo", "1.0", tmp_path)
        new = installed("foo", "2.0", tmp_path)
        store.add_installed(old)
        store.add_installed(new)
        assert store.get_installed("foo") == [new, old]
        assert store.best_installed("foo") == new
        assert store.best_installed("foo", VersionVector.parse("3")) is None
        store.remove_installed(new)
        store.remove_installed(old)
        assert "foo" not in store.installed

    def test_load_installed_user_dir_shadows_system(self, tmp_path):
        user, system = tmp_path / "user", tmp_path / "system"
        for root in (user, system):
            pkg_dir = root / "foo-1.0"
            pkg_dir.mkdir(parents=True)
            write_description_file(PackageDescriptor.create("foo", "1.0", kind="tar"), pkg_dir)
        other = system / "bar-2.0"
        other.mkdir()
        write_description_file(PackageDescriptor.create("bar", "2.0", kind="tar"), other)
        broken = user / "junk-1"
        broken.mkdir()
        (broken / "junk-pkg.el").write_text("(define-package", encoding="utf-8")

        store = DescriptorStore()
        assert store.load_installed([user, system, tmp_path / "missing"]) == 2
        assert store.get_installed("foo")[0].install_dir == user / "foo-1.0"
        assert store.installed_p("bar")
        assert "junk" not in store.installed

    def test_signed_marker(self, tmp_path):
        pkg_dir = tmp_path / "foo-1.0"
        pkg_dir.mkdir()
        write_description_file(PackageDescriptor.create("foo", "1.0", kind="tar"), pkg_dir)
        assert not load_installed_descriptor(pkg_dir).signed
        (pkg_dir / "foo-1.0.signed").write_text("ed25519:abc\n", encoding="utf-8")
        assert load_installed_descriptor(pkg_dir).signed


class TestCompatibility:
    def test_host_requirement_filters_versions(self, archives):
        store = DescriptorStore(host_version="29.1", archives=archives)
        store.replace_available({"gnu": [
            avail("foo", "2.0", "gnu", [("emacs", "30.1")]),
            avail("foo", "1.0", "gnu", [("emacs", "25.1")]),
        ]})
        assert store.compatible_version("foo") == VersionVector.parse("1.0")
        assert store.incompatible_requirements(store.available_for("foo")[0]) == [
            store.available_for("foo")[0].requirements[0]
        ]

    def test_cache_invalidated_on_replace(self, archives):
        store = DescriptorStore(archives=archives)
        store.replace_available({"gnu": [avail("foo", "1.0", "gnu")]})
        assert store.compatible_version("foo") == VersionVector.parse("1.0")
        store.replace_available({"gnu": [avail("foo", "1.5", "gnu")]})
        assert store.compatible_version("foo") == VersionVector.parse("1.5")

    def test_deep_mode_checks_dependencies(self, archives):
        store = DescriptorStore(archives=archives)
        store.replace_available({"gnu": [
            avail("bar", "1.0", "gnu", [("baz", "2.0")]),
            avail("baz", "1.0", "gnu"),
        ]})
        assert store.compatible_version("bar") == VersionVector.parse("1.0")
        assert store.compatible_version("bar", deep=True) is None

    def test_deep_mode_tolerates_cycles(self, archives):
        store = DescriptorStore(archives=archives)
        store.replace_available({"gnu": [
            avail("a", "1.0", "gnu", [("b", "1.0")]),
            avail("b", "1.0", "gnu", [("a", "1.0")]),
        ]})
        assert store.compatible_version("a", deep=True) == VersionVector.parse("1.0")
        assert store.compatible_version("b", deep=True) == VersionVector.parse("1.0")


class TestDependencyQueries:
    def test_reverse_dependencies(self, tmp_path):
        store = DescriptorStore()
        foo = installed("foo", "1.0", tmp_path, [("bar", "1.0")])
        bar = installed("bar", "1.0", tmp_path)
        store.add_installed(foo)
        store.add_installed(bar)
        assert store.reverse_dependencies("bar") == [foo]
        assert store.used_elsewhere(bar) == [foo]
        assert store.used_elsewhere(bar, ignored=["foo"]) == []

    def test_removable_packages(self, tmp_path):
        store = DescriptorStore()
        store.add_installed(installed("foo", "1.0", tmp_path, [("bar", "1.0")]))
        store.add_installed(installed("bar", "1.0", tmp_path, [("baz", "1.0")]))
        store.add_installed(installed("baz", "1.0", tmp_path))
        store.add_installed(installed("orphan", "1.0", tmp_path))
        store.select("foo")
        assert store.dependency_closure(["foo"]) == ["foo", "bar", "baz"]
        assert store.removable_packages() == ["orphan"]

    def test_seed_selection_picks_leaves(self, tmp_path):
        store = DescriptorStore()
        store.add_installed(installed("foo", "1.0", tmp_path, [("bar", "1.0")]))
        store.add_installed(installed("bar", "1.0", tmp_path))
        store.add_installed(installed("orphan", "1.0", tmp_path))
        assert store.seed_selection() == ["foo", "orphan"]
        assert store.removable_packages() == []
        assert store.seed_selection() == []
        assert store.selected == ["foo", "orphan"]

    def test_upgradeable_packages(self, tmp_path, archives):
        store = DescriptorStore(archives=archives)
        old = installed("foo", "1.0", tmp_path)
        store.add_installed(old)
        store.add_installed(installed("bar", "1.0", tmp_path))
        store.replace_available({"gnu": [avail("foo", "2.0", "gnu"), avail("bar", "1.0", "gnu")]})
        pairs = store.upgradeable_packages()
        assert [(o.full_name, n.full_name) for o, n in pairs] == [("foo-1.0", "foo-2.0")]

    def test_selection(self):
        store = DescriptorStore()
        assert store.select("foo")
        assert not store.select("foo")
        assert store.deselect("foo")
        assert store.selected == []

    def test_snapshot_detects_changes(self, tmp_path):
        store = DescriptorStore()
        before = store.snapshot()
        assert store.snapshot() == before
        store.add_installed(installed("foo", "1.0", tmp_path))
        assert store.snapshot() != before
