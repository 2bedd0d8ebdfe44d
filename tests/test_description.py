"""Tests for the s-expression reader and description files."""

import pytest

from common.errors import DescriptorError
from packages import sexp
from packages.description import (
    parse_define_package,
    parse_library_headers,
    read_description_file,
    write_description_file,
)
from packages.descriptor import PackageDescriptor, PackageKind, Requirement
from versioning import VersionVector


class TestReader:
    def test_atoms_and_lists(self):
        assert sexp.read('(a "b" 1 2.5 :k nil)') == ["a", "b", 1, 2.5, ":k", None]
        assert isinstance(sexp.read("foo"), sexp.Symbol)
        assert sexp.read(":url").is_keyword

    def test_dotted_pairs(self):
        assert sexp.read("(a . b)") == sexp.DottedList(("a",), "b")
        assert sexp.read("(a . (b c))") == ["a", "b", "c"]
        assert sexp.read("(a . nil)") == ["a"]

    def test_vectors(self):
        assert sexp.read("[1 (2) \"x\"]") == (1, [2], "x")

    def test_quote_forms(self):
        assert sexp.read("'foo") == [sexp.QUOTE, "foo"]
        assert sexp.read("#'foo") == [sexp.FUNCTION, "foo"]
        assert sexp.read("`(a ,b ,@c)") == [
            sexp.BACKQUOTE,
            ["a", [sexp.UNQUOTE, "b"], [sexp.SPLICE, "c"]],
        ]

    def test_strings_chars_comments(self):
        assert sexp.read(r'"a\"b\nc"') == 'a"b\nc'
        assert sexp.read("?a") == 97
        assert sexp.read_all("; hi\n(a) ; x\n(b)") == [["a"], ["b"]]

    @pytest.mark.parametrize("text", ["(a", ")", "#[1 2]", '"open'])
    def test_malformed(self, text):
        with pytest.raises(sexp.SexpError):
            sexp.read(text)

    @pytest.mark.parametrize("text", ["(" * 5000 + ")" * 5000, "'" * 5000 + "a", "[" * 5000 + "]" * 5000])
    def test_deep_nesting_is_a_read_error(self, text):
        with pytest.raises(sexp.SexpError) as exc_info:
            sexp.read_all(text)
        assert "nested too deeply" in str(exc_info.value)

    def test_sexp_error_is_descriptor_error(self):
        with pytest.raises(DescriptorError):
            sexp.read_all("(a))")

    def test_dumps(self):
        assert sexp.dumps([sexp.Symbol("a"), "b", 1, None]) == '(a "b" 1 nil)'
        assert sexp.dumps([sexp.QUOTE, [sexp.Symbol("x")]]) == "'(x)"
        assert sexp.dumps(sexp.DottedList((sexp.Symbol("a"),), 1)) == "(a . 1)"
        assert sexp.dumps((1, 2)) == "[1 2]"
        assert sexp.dumps(True) == "t"
        assert sexp.dumps('say "hi"') == '"say \\"hi\\""'


class TestDefinePackage:
    def test_parse(self):
        form = sexp.read(
            '(define-package "foo" "1.2" "Foo pkg" \'((bar "1.0") (baz (2 1)))'
            ' :url "https://example.org" :keywords \'("a" "b"))'
        )
        desc = parse_define_package(form)
        assert desc.name == "foo"
        assert desc.version == VersionVector.parse("1.2")
        assert desc.summary == "Foo pkg"
        assert desc.requirements == (Requirement.of("bar", "1.0"), Requirement.of("baz", "2.1"))
        assert desc.kind is PackageKind.TAR
        assert desc.extras["url"] == "https://example.org"
        assert desc.extras["keywords"] == ["a", "b"]

    def test_bad_version(self):
        with pytest.raises(DescriptorError):
            parse_define_package(sexp.read('(define-package "foo" "one" "x" nil)'))

    def test_odd_plist(self):
        with pytest.raises(DescriptorError):
            parse_define_package(sexp.read('(define-package "foo" "1" "x" nil :url)'))

    def test_write_then_read_reconstructs_descriptor(self, tmp_path):
        desc = PackageDescriptor.create(
            "foo",
            "1.2",
            summary="Summary",
            requirements=[("bar", "1.0")],
            kind="single",
            archive="gnu",
            extras={"url": "https://example.org"},
        )
        path = write_description_file(desc, tmp_path)
        assert path.name == "foo-pkg.el"
        loaded = read_description_file(path)
        assert loaded == desc.with_install_dir(tmp_path)
        assert loaded.extras == {"url": "https://example.org"}

    def test_read_missing_form(self, tmp_path):
        path = tmp_path / "foo-pkg.el"
        path.write_text(";; nothing here\n", encoding="utf-8")
        with pytest.raises(DescriptorError):
            read_description_file(path)


class TestLibraryHeaders:
    HEADER = "\n".join([
        ";;; foo.el --- Do foo things  -*- lexical-binding: t -*-",
        "",
        ";; Author: A. Hacker <a@example.org>",
        ";; Version: 0.3",
        ';; Package-Requires: ((emacs "26.1")',
        ';;                    (bar "1.0"))',
        ";; Keywords: tools, convenience",
        ";; URL: https://example.org/foo",
        "",
        ";;; Code:",
        "(provide 'foo)",
    ])

    def test_parse_headers(self):
        desc = parse_library_headers(self.HEADER, file_name="foo.el")
        assert desc.name == "foo"
        assert desc.summary == "Do foo things"
        assert desc.version == VersionVector.parse("0.3")
        assert desc.kind is PackageKind.SINGLE
        assert [r.name for r in desc.requirements] == ["emacs", "bar"]
        assert desc.requirement_for("emacs").min_version == VersionVector.parse("26.1")
        assert desc.extras["keywords"] == ["tools", "convenience"]
        assert desc.extras["url"] == "https://example.org/foo"
        assert desc.extras["author"] == "A. Hacker <a@example.org>"

    def test_package_version_wins(self):
        text = ";;; foo.el --- x\n;; Version: 1.0\n;; Package-Version: 2.0\n"
        assert parse_library_headers(text).version == VersionVector.parse("2.0")

    def test_missing_version(self):
        with pytest.raises(DescriptorError):
            parse_library_headers(";;; foo.el --- x\n;;; Code:\n")

    def test_missing_header(self):
        with pytest.raises(DescriptorError):
            parse_library_headers("(defun foo ())\n")
