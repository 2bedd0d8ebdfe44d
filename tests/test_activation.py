"""Tests for package activation and the extension host."""

import pytest

from activation.engine import ActivationEngine, ActivationState
from activation.host import ExtensionHost
from common.errors import ActivationError
from conftest import elisp_source
from install.engine import InstallEngine
from packages.descriptor import PackageDescriptor
from packages.store import DescriptorStore
from resolution.policy import HoldPolicy
from versioning import VersionVector


@pytest.fixture
def store():
    return DescriptorStore()


@pytest.fixture
def install(tmp_path, store):
    engine = InstallEngine(tmp_path / "elpa")

    def factory(name, version, requires=()):
        desc = PackageDescriptor.create(name, version, requirements=requires, kind="single")
        result = engine.unpack(desc, elisp_source(name, version, requires).encode())
        store.add_installed(result.descriptor)
        return result.descriptor

    return factory


class TestActivate:
    def test_dependencies_first(self, store, install):
        install("bar", "1.0")
        foo = install("foo", "1.0", [("bar", "1.0"), ("emacs", "25.1")])
        engine = ActivationEngine(store)
        assert engine.activate(foo)
        assert engine.activated == ["bar", "foo"]
        assert engine.host.load_path[0] == foo.install_dir
        entry = engine.host.autoloads["foo-hello"]
        assert entry.file == "foo"
        assert entry.interactive
        assert entry.docstring == "Say hello from foo."
        assert "bar-hello" in engine.host.autoloads
        assert engine.state("foo") is ActivationState.ACTIVE

    def test_idempotent(self, store, install):
        foo = install("foo", "1.0")
        engine = ActivationEngine(store)
        engine.activate(foo)
        loads = list(engine.host.load_history)
        assert engine.activate(foo)
        assert engine.activated == ["foo"]
        assert engine.host.load_history == loads
        assert engine.host.load_path.count(foo.install_dir) == 1

    def test_missing_dependency(self, store, install):
        foo = install("foo", "1.0", [("baz", "2.0")])
        engine = ActivationEngine(store)
        with pytest.raises(ActivationError) as exc_info:
            engine.activate(foo)
        assert exc_info.value.missing_dependency == "baz"
        assert exc_info.value.required_version == VersionVector.parse("2.0")
        assert engine.state("foo") is ActivationState.INACTIVE
        assert engine.activated == []

    def test_host_too_old(self, store, install):
        foo = install("foo", "1.0", [("emacs", "99")])
        with pytest.raises(ActivationError) as exc_info:
            ActivationEngine(store).activate(foo)
        assert exc_info.value.missing_dependency == "emacs"

    def test_active_dependency_too_old(self, store, install):
        old_bar = install("bar", "1.0")
        install("bar", "2.0")
        foo = install("foo", "1.0", [("bar", "2.0")])
        engine = ActivationEngine(store)
        engine.activate(old_bar)
        with pytest.raises(ActivationError) as exc_info:
            engine.activate(foo)
        assert "already active" in str(exc_info.value)

    def test_cycle(self, store, install):
        a = install("a", "1.0", [("b", "1.0")])
        install("b", "1.0", [("a", "1.0")])
        engine = ActivationEngine(store)
        assert engine.activate(a)
        assert engine.activated == ["b", "a"]

    def test_not_installed(self, store):
        with pytest.raises(ActivationError):
            ActivationEngine(store).activate(PackageDescriptor.create("foo", "1.0"))

    def test_builtin_is_noop(self, store):
        engine = ActivationEngine(store)
        assert engine.activate(store.builtin["emacs"][0])
        assert engine.activate_by_name("emacs")
        assert engine.activated == []

    def test_load_failure(self, store, install):
        foo = install("foo", "1.0")
        (foo.install_dir / "foo-autoloads.el").write_text("(autoload 'foo-hello", encoding="utf-8")
        with pytest.raises(ActivationError) as exc_info:
            ActivationEngine(store).activate(foo)
        assert "load failure" in str(exc_info.value)

    def test_reload_reloads_previously_loaded_files(self, store, install):
        old = install("foo", "1.0")
        engine = ActivationEngine(store)
        engine.activate(old)
        engine.host.load_file(old.install_dir / "foo.el")
        new = install("foo", "1.1")
        assert engine.activate(new, reload=True)
        assert engine.active_version("foo") == new
        assert new.install_dir / "foo.el" in engine.host.load_history
        assert engine.activated == ["foo", "foo"]


class TestPolicy:
    def test_hold_chooses_version(self, store, install):
        install("bar", "1.0")
        newest = install("bar", "2.0")
        policy = HoldPolicy.from_config({"bar": "1.0"})
        engine = ActivationEngine(store, policy=policy)
        assert engine.activate_by_name("bar")
        assert engine.active_version("bar").version == VersionVector.parse("1.0")
        report = engine.activate_all([newest])
        assert report.skipped == ["bar-2.0"]

    def test_disabled_package(self, store, install):
        install("bar", "1.0")
        engine = ActivationEngine(store, policy=HoldPolicy.from_config({"bar": "disabled"}))
        with pytest.raises(ActivationError):
            engine.activate_by_name("bar")

    def test_activate_all_isolates_failures(self, store, install):
        good = install("good", "1.0")
        broken = install("broken", "1.0", [("missing", "1.0")])
        other = install("other", "1.0")
        report = ActivationEngine(store).activate_all([good, broken, other])
        assert report.activated == ["good", "other"]
        assert list(report.failures) == ["broken"]
        assert not report.ok


class TestExtensionHost:
    def test_load_path(self, tmp_path):
        host = ExtensionHost()
        assert host.add_to_load_path(tmp_path / "a")
        assert host.add_to_load_path(tmp_path / "b")
        assert not host.add_to_load_path(tmp_path / "a")
        assert host.load_path == [tmp_path / "b", tmp_path / "a"]

    def test_load_file(self, tmp_path):
        path = tmp_path / "x-autoloads.el"
        path.write_text(
            "\n".join([
                ";;; x-autoloads.el",
                "(add-to-list 'load-path (directory-file-name (file-name-directory load-file-name)))",
                "(progn (autoload 'x-mac \"x\" nil nil 'macro))",
                "(provide 'x-autoloads)",
                "(setq ignored t)",
            ]),
            encoding="utf-8",
        )
        host = ExtensionHost()
        assert host.load_file(path) == 4
        assert host.load_path == [tmp_path]
        assert host.autoloads["x-mac"].macro
        assert not host.autoloads["x-mac"].interactive
        assert host.featurep("x-autoloads")
        assert host.was_loaded("x-autoloads.el")
        assert not host.was_loaded("y.el")
