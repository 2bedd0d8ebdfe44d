"""Shared fixtures: package sources, local archives and signing keys."""

import base64
import io
import json
import tarfile
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from config import Settings
from constants import Constants, SignaturePolicy
from packages.descriptor import PackageDescriptor, PackageKind
from registry.index import render_archive_contents
from registry.signature import Keyring, compute_key_id
from registry.sources import ArchiveSource


def elisp_source(name, version, requires=(), summary=None):
    """Source of a small single-file package with one autoloaded command."""
    lines = [f";;; {name}.el --- {summary or 'Package ' + name}  -*- lexical-binding: t -*-"]
    lines.append(f";; Version: {version}")
    if requires:
        reqs = " ".join(f'({dep} "{ver}")' for dep, ver in requires)
        lines.append(f";; Package-Requires: ({reqs})")
    lines += [
        ";;; Code:",
        ";;;###autoload",
        f"(defun {name}-hello ()",
        f'  "Say hello from {name}."',
        "  (interactive)",
        '  (message "hello"))',
        f"(provide '{name})",
        f";;; {name}.el ends here",
        "",
    ]
    return "\n".join(lines)


def tar_bundle(name, version, requires=(), extra_members=None):
    """A bundle with ``<name>-<version>/`` holding the library and its -pkg.el."""
    root = f"{name}-{version}"
    reqs = " ".join(f'({dep} "{ver}")' for dep, ver in requires)
    members = {
        f"{root}/{name}.el": elisp_source(name, version, requires),
        f"{root}/{name}-pkg.el": f'(define-package "{name}" "{version}" "Bundle {name}" \'({reqs}))\n',
    }
    members.update(extra_members or {})
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for path, text in members.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(path)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class Signer:
    """An Ed25519 key that writes ``.sig`` sidecars."""

    def __init__(self):
        self.key = Ed25519PrivateKey.generate()
        self.public = self.key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.kid = compute_key_id(self.public)

    def sidecar(self, data):
        sig = base64.b64encode(self.key.sign(data)).decode("ascii")
        return json.dumps(
            {
                "format": "elpm-sig",
                "version": 0,
                "signatures": [{"algo": "ed25519", "kid": self.kid, "sig": sig}],
            }
        ).encode("utf-8")

    def sign_file(self, path):
        path.with_name(path.name + Constants.SIGNATURE_SUFFIX).write_bytes(self.sidecar(path.read_bytes()))

    def keyring(self):
        ring = Keyring.empty()
        ring.add(self.public)
        return ring

    def write_keyring(self, path):
        path.write_text(
            json.dumps(
                {
                    "format": "elpm-keyring",
                    "version": 0,
                    "keys": {
                        self.kid: {"algo": "ed25519", "pubkey": base64.b64encode(self.public).decode("ascii")}
                    },
                }
            ),
            encoding="utf-8",
        )
        return path


class LocalArchive:
    """An archive directory with an ``archive-contents`` index."""

    def __init__(self, root, name, signer=None):
        self.root = Path(root)
        self.name = name
        self.signer = signer
        self.entries = []
        self.root.mkdir(parents=True, exist_ok=True)
        self.publish()

    @property
    def source(self):
        return ArchiveSource(name=self.name, location=str(self.root))

    def add(self, name, version, requires=(), kind="single", write_artifact=True):
        desc = PackageDescriptor.create(
            name,
            version,
            summary=f"Package {name}",
            requirements=requires,
            kind=kind,
            archive=self.name,
        )
        if write_artifact:
            if desc.kind is PackageKind.TAR:
                data = tar_bundle(name, version, requires)
            else:
                data = elisp_source(name, version, requires).encode("utf-8")
            path = self.root / desc.artifact_name()
            path.write_bytes(data)
            if self.signer:
                self.signer.sign_file(path)
        self.entries.append(desc)
        self.publish()
        return desc

    def publish(self):
        path = self.root / Constants.ARCHIVE_CONTENTS_FILE
        path.write_text(render_archive_contents(self.entries), encoding="utf-8")
        if self.signer:
            self.signer.sign_file(path)


@pytest.fixture
def signer():
    return Signer()


@pytest.fixture
def make_archive(tmp_path):
    """Factory for local archives under ``tmp_path/archives``."""

    def factory(name="local", signer=None):
        return LocalArchive(tmp_path / "archives" / name, name, signer=signer)

    return factory


@pytest.fixture
def make_settings(tmp_path):
    """Factory for settings rooted in ``tmp_path``."""

    def factory(local_archives, **overrides):
        values = dict(
            archives=[(a.name, str(a.root)) for a in local_archives],
            package_dir=tmp_path / "elpa",
            cache_dir=tmp_path / "cache",
            state_file=tmp_path / "state.yml",
            signature_policy=SignaturePolicy.ALLOW_UNSIGNED,
        )
        values.update(overrides)
        return Settings(**values)

    return factory
