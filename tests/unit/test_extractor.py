"""Tests for core/extractor.py."""

from __future__ import annotations

import io
import stat
import tarfile
import zipfile
from pathlib import Path

import pytest

from appvet.core.extractor import (
    TEMP_PREFIX,
    cleanup_temp_dir,
    compute_file_hash,
    extract_archive,
    extracted_archive,
    get_file_priority,
    get_file_stats,
    group_files_by_priority,
    hash_content,
    is_code_file,
    is_excluded_path,
)
from appvet.exceptions import ArchiveTooLarge, ExtractionError, TooManyFiles
from appvet.models.config import ExtractionLimits

from conftest import make_file


class TestFilters:
    @pytest.mark.parametrize(
        "path",
        ["src/index.js", "app.py", "config.yaml", "README.md", ".env.example", "schema.prisma"],
    )
    def test_code_files_included(self, path):
        assert is_code_file(path)

    @pytest.mark.parametrize(
        "path",
        ["dist/app.min.js", "logo.png", "package-lock.json", "yarn.lock", "lib.so", "bundle.js.map"],
    )
    def test_non_code_files_excluded(self, path):
        assert not is_code_file(path)

    def test_excluded_directories(self):
        assert is_excluded_path("node_modules/left-pad/index.js")
        assert is_excluded_path("src/__pycache__/mod.py")
        assert not is_excluded_path("src/lib/index.js")

    def test_hidden_paths_excluded_except_env_examples(self):
        assert is_excluded_path(".git/config")
        assert is_excluded_path(".env")
        assert not is_excluded_path(".env.example")


class TestExtractArchive:
    def test_zip_reads_source_files(self, make_zip):
        archive = make_zip({
            "src/index.js": "console.log('hi')\n",
            "README.md": "# App\n",
            "logo.png": b"\x89PNG\r\n",
            "node_modules/x/index.js": "module.exports = 1\n",
        })
        result = extract_archive(archive)
        try:
            paths = [f.relative_path for f in result.files]
            assert paths == ["README.md", "src/index.js"]
            index = result.files[1]
            assert index.content == "console.log('hi')\n"
            assert index.content_hash == hash_content(index.content)
            assert index.extension == ".js"
            assert result.total_size == sum(f.size_bytes for f in result.files)
            assert result.extract_dir.name.startswith(TEMP_PREFIX)
        finally:
            cleanup_temp_dir(result.extract_dir)

    def test_tar_gz_supported(self, make_tar):
        archive = make_tar({"app/main.py": "print('ok')\n"})
        with extracted_archive(archive) as result:
            assert [f.relative_path for f in result.files] == ["app/main.py"]

    def test_context_manager_cleans_up(self, make_zip):
        archive = make_zip({"index.js": "x = 1\n"})
        with extracted_archive(archive) as result:
            extract_dir = result.extract_dir
            assert extract_dir.exists()
        assert not extract_dir.exists()

    def test_binary_and_non_utf8_skipped(self, make_zip):
        archive = make_zip({
            "ok.js": "let a = 1\n",
            "nul.js": b"abc\x00def",
            "latin1.txt": "caf\xe9".encode("latin-1"),
        })
        with extracted_archive(archive) as result:
            assert [f.relative_path for f in result.files] == ["ok.js"]

    def test_oversized_file_skipped(self, make_zip):
        archive = make_zip({"big.js": "a" * 4096, "small.js": "b\n"})
        limits = ExtractionLimits(max_file_size_kb=2)
        with extracted_archive(archive, limits) as result:
            assert [f.relative_path for f in result.files] == ["small.js"]

    def test_total_size_limit(self, make_zip):
        archive = make_zip({"a.js": "a" * 1500, "b.js": "b" * 1500})
        limits = ExtractionLimits(max_file_size_kb=2, max_total_size_kb=2)
        with pytest.raises(ArchiveTooLarge, match="Total code size"):
            extract_archive(archive, limits)

    def test_too_many_files(self, make_zip):
        archive = make_zip({f"f{i}.js": "x\n" for i in range(4)})
        with pytest.raises(TooManyFiles, match="4 > 3"):
            extract_archive(archive, ExtractionLimits(max_files=3))

    def test_raw_expansion_limit(self, make_zip):
        archive = make_zip({"data.txt": "z" * (3 * 1024)})
        with pytest.raises(ArchiveTooLarge):
            extract_archive(archive, ExtractionLimits(max_extract_size_kb=2))

    def test_failure_removes_temp_dir(self, make_zip, tmp_path, monkeypatch):
        import tempfile

        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        archive = make_zip({f"f{i}.js": "x\n" for i in range(3)})
        with pytest.raises(TooManyFiles):
            extract_archive(archive, ExtractionLimits(max_files=1))
        assert not list(tmp_path.glob(f"{TEMP_PREFIX}*"))

    def test_zip_path_traversal_rejected(self, tmp_path):
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../../escape.js", "pwned\n")
        with pytest.raises(ExtractionError, match="Path traversal"):
            extract_archive(archive)

    def test_tar_path_traversal_rejected(self, tmp_path):
        archive = tmp_path / "evil.tar.gz"
        data = b"pwned\n"
        with tarfile.open(archive, "w:gz") as tf:
            info = tarfile.TarInfo("../escape.js")
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
        with pytest.raises(ExtractionError, match="Path traversal"):
            extract_archive(archive)

    def test_tar_symlink_ignored(self, tmp_path):
        archive = tmp_path / "links.tar"
        data = b"ok\n"
        with tarfile.open(archive, "w") as tf:
            info = tarfile.TarInfo("real.js")
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
            link = tarfile.TarInfo("passwd.txt")
            link.type = tarfile.SYMTYPE
            link.linkname = "/etc/passwd"
            tf.addfile(link)
        with extracted_archive(archive) as result:
            assert [f.relative_path for f in result.files] == ["real.js"]

    def test_tar_special_mode_bits_stripped(self, tmp_path):
        archive = tmp_path / "modes.tar"
        data = b"console.log(1)\n"
        with tarfile.open(archive, "w") as tf:
            info = tarfile.TarInfo("run.js")
            info.size = len(data)
            info.mode = 0o6777
            tf.addfile(info, io.BytesIO(data))
        with extracted_archive(archive) as result:
            mode = stat.S_IMODE(Path(result.files[0].path).stat().st_mode)
        assert not mode & (stat.S_ISUID | stat.S_ISGID)
        assert not mode & stat.S_IWOTH

    def test_tar_absolute_path_rejected(self, tmp_path):
        archive = tmp_path / "abs.tar"
        data = b"x\n"
        with tarfile.open(archive, "w") as tf:
            info = tarfile.TarInfo("/tmp/appvet-abs.js")
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
        with pytest.raises(ExtractionError):
            extract_archive(archive)

    @pytest.mark.parametrize("kind", ["zip", "tar"])
    def test_repeat_extraction_is_identical(self, make_zip, make_tar, kind):
        files = {
            "src/z.js": "export default 1;\n",
            "src/a.py": "print('a')\n",
            "lib/util/helpers.ts": "export const h = () => 0;\n",
            "README.md": "# App\n",
        }
        archive = make_zip(files) if kind == "zip" else make_tar(files)

        runs = []
        for _ in range(2):
            with extracted_archive(archive) as result:
                runs.append((
                    [f.relative_path for f in result.files],
                    [f.content_hash for f in result.files],
                    result.total_size,
                ))

        assert runs[0] == runs[1]
        assert runs[0][0] == sorted(files)

    def test_corrupt_zip(self, tmp_path):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"not a zip at all")
        with pytest.raises(ExtractionError, match="Corrupt zip"):
            extract_archive(archive)

    def test_unsupported_format(self, tmp_path):
        archive = tmp_path / "app.rar"
        archive.write_bytes(b"Rar!")
        with pytest.raises(ExtractionError, match="Unsupported archive format"):
            extract_archive(archive)

    def test_missing_archive(self, tmp_path):
        with pytest.raises(ExtractionError, match="not found"):
            extract_archive(tmp_path / "gone.zip")


class TestPriority:
    def test_priority_groups(self):
        assert get_file_priority("src/index.js") == 1
        assert get_file_priority("api/users.py") == 1
        assert get_file_priority("src/lib/format.js") == 2
        assert get_file_priority("docs/notes.md") == 3

    def test_group_preserves_order(self):
        files = [
            make_file("docs/a.md", "a"),
            make_file("src/util.js", "b"),
            make_file("server.js", "c"),
            make_file("docs/b.md", "d"),
        ]
        high, medium, low = group_files_by_priority(files)
        assert [f.relative_path for f in high] == ["server.js"]
        assert [f.relative_path for f in medium] == ["src/util.js"]
        assert [f.relative_path for f in low] == ["docs/a.md", "docs/b.md"]


class TestStats:
    def test_file_stats(self):
        files = [make_file("a.js", "1234"), make_file("b.js", "12"), make_file("c.py", "123456")]
        stats = get_file_stats(files)
        assert stats["total_files"] == 3
        assert stats["total_size"] == 12
        assert stats["by_extension"] == {".js": 2, ".py": 1}
        assert stats["avg_file_size"] == 4

    def test_empty_stats(self):
        assert get_file_stats([])["avg_file_size"] == 0

    def test_compute_file_hash(self, tmp_path: Path):
        path = tmp_path / "blob.bin"
        path.write_bytes(b"hello")
        assert compute_file_hash(path) == (
            "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
        )
