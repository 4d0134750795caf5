"""
Tests for release asset selection and parsing of GitHub release data.
"""

import pytest

from ghr_installer.exceptions import UnsupportedArchitectureError, ValidationError
from ghr_installer.install.assets import (
    create_asset_from_github_data,
    create_release_from_github_data,
    get_arch_patterns,
    is_excluded_asset,
    normalize_arch,
    select_asset,
)
from ghr_installer.install.interfaces import Asset

pytestmark = [pytest.mark.unit, pytest.mark.core]


def _assets(*names):
    return [Asset(name=n, download_url=f"https://example.com/{n}") for n in names]


class TestNormalizeArch:
    @pytest.mark.parametrize(
        "raw,family",
        [
            ("x86_64", "x86_64"),
            ("amd64", "x86_64"),
            ("AMD64", "x86_64"),
            ("aarch64", "aarch64"),
            ("arm64", "aarch64"),
        ],
    )
    def test_supported(self, raw, family):
        assert normalize_arch(raw) == family

    @pytest.mark.parametrize("raw", ["armv7l", "i686", "riscv64", ""])
    def test_unsupported(self, raw):
        with pytest.raises(UnsupportedArchitectureError) as exc_info:
            normalize_arch(raw)
        assert isinstance(exc_info.value, ValidationError)

    def test_patterns_are_most_specific_first(self):
        patterns = [p.pattern for p in get_arch_patterns("x86_64")]
        assert patterns[0] == r"linux.*x86[_-]64"
        assert patterns[-1] == "linux"


class TestIsExcludedAsset:
    @pytest.mark.parametrize(
        "name",
        [
            "pkg-linux-x86_64.tar.gz.sha256",
            "pkg_checksums.txt",
            "pkg-linux-x86_64.deb",
            "pkg-linux-arm64.tar.gz",
            "pkg-x86_64-unknown-linux-musl.tar.gz",
            "pkg-linux-386.tar.gz",
            "pkg-linux-i686.tar.gz",
            "pkg-linux-ppc64le.tar.gz",
            "pkg-linux-riscv64.tar.gz",
            "pkg-linux-s390x.tar.gz",
        ],
    )
    def test_excluded_for_x86_64(self, name):
        assert is_excluded_asset(name, "x86_64")

    @pytest.mark.parametrize(
        "name",
        [
            "pkg-linux-amd64.tar.gz",
            "pkg-linux-armv7.tar.gz",
            "pkg-i686-linux.zip",
            "pkg-linux-ppc64le.tar.gz",
            "pkg-linux-riscv64.tar.gz",
        ],
    )
    def test_excluded_for_aarch64(self, name):
        assert is_excluded_asset(name, "aarch64")

    def test_not_excluded(self):
        assert not is_excluded_asset("pkg-linux-x86_64.tar.gz", "x86_64")
        assert not is_excluded_asset("pkg-linux-arm64.tar.gz", "aarch64")


class TestSelectAsset:
    def test_prefers_matching_architecture_over_checksum(self):
        assets = _assets(
            "pkg-linux-arm64.tar.gz",
            "pkg-linux-x86_64.tar.gz",
            "pkg-linux-x86_64.sha256",
        )
        selected = select_asset(assets, "x86_64")
        assert selected is not None
        assert selected.name == "pkg-linux-x86_64.tar.gz"

    def test_arm64_host(self):
        assets = _assets(
            "pkg-linux-arm64.tar.gz",
            "pkg-linux-x86_64.tar.gz",
            "pkg-linux-x86_64.sha256",
        )
        selected = select_asset(assets, "arm64")
        assert selected is not None
        assert selected.name == "pkg-linux-arm64.tar.gz"

    def test_fzf_style_names(self):
        assets = _assets(
            "fzf-0.57.0-darwin_amd64.tar.gz",
            "fzf-0.57.0-linux_amd64.tar.gz",
            "fzf-0.57.0-linux_arm64.tar.gz",
            "fzf-0.57.0-windows_amd64.zip",
            "fzf_0.57.0_checksums.txt",
        )
        assert select_asset(assets, "x86_64").name == "fzf-0.57.0-linux_amd64.tar.gz"
        assert select_asset(assets, "aarch64").name == "fzf-0.57.0-linux_arm64.tar.gz"

    def test_rust_target_triple_names(self):
        assets = _assets(
            "ripgrep-14.1.1-aarch64-unknown-linux-gnu.tar.gz",
            "ripgrep-14.1.1-x86_64-unknown-linux-musl.tar.gz",
            "ripgrep-14.1.1-x86_64-unknown-linux-gnu.tar.gz",
            "ripgrep_14.1.1-1_amd64.deb",
        )
        assert (
            select_asset(assets, "x86_64").name
            == "ripgrep-14.1.1-x86_64-unknown-linux-gnu.tar.gz"
        )
        assert (
            select_asset(assets, "aarch64").name
            == "ripgrep-14.1.1-aarch64-unknown-linux-gnu.tar.gz"
        )

    def test_other_64_bit_architectures_are_not_picked_for_x86_64(self):
        assets = _assets(
            "t-linux-ppc64le.tar.gz",
            "t-linux-s390x.tar.gz",
            "t-linux-riscv64.tar.gz",
            "t-linux-64.tar.gz",
        )
        assert select_asset(assets, "x86_64").name == "t-linux-64.tar.gz"

    def test_32_bit_x86_is_not_picked_for_x86_64(self):
        assets = _assets("t-linux-386.tar.gz", "t-linux-i686.tar.gz", "t-linux.tar.gz")
        assert select_asset(assets, "x86_64").name == "t-linux.tar.gz"

    def test_more_specific_pattern_beats_upstream_order(self):
        assets = _assets("tool-linux.tar.gz", "tool-linux-x86_64.tar.gz")
        assert select_asset(assets, "x86_64").name == "tool-linux-x86_64.tar.gz"

    def test_first_asset_in_upstream_order_wins_within_a_pattern(self):
        assets = _assets("tool-linux-x86_64.zip", "tool-linux-x86_64.tar.gz")
        assert select_asset(assets, "x86_64").name == "tool-linux-x86_64.zip"

    def test_source_archives_are_not_a_fallback(self):
        assets = _assets("source.tar.gz", "tool-darwin-amd64.tar.gz", "tool.exe")
        assert select_asset(assets, "x86_64") is None

    def test_non_archive_extensions_are_skipped(self):
        assets = _assets("tool-linux-x86_64", "tool-linux-x86_64.tar.xz")
        assert select_asset(assets, "x86_64") is None

    def test_empty_asset_list(self):
        assert select_asset([], "x86_64") is None

    def test_unsupported_arch_raises(self):
        with pytest.raises(UnsupportedArchitectureError):
            select_asset(_assets("tool-linux-x86_64.tar.gz"), "mips")


class TestReleaseParsing:
    def test_release_from_github_data(self):
        release = create_release_from_github_data(
            {
                "tag_name": "v0.57.0",
                "published_at": "2024-12-08T00:00:00Z",
                "assets": [
                    {
                        "name": "fzf-0.57.0-linux_amd64.tar.gz",
                        "browser_download_url": "https://example.com/fzf.tar.gz",
                        "size": 1234,
                    },
                    {"name": "missing-url"},
                    "not-a-dict",
                ],
            }
        )
        assert release is not None
        assert release.tag_name == "v0.57.0"
        assert release.version == "0.57.0"
        assert [a.name for a in release.assets] == ["fzf-0.57.0-linux_amd64.tar.gz"]
        assert release.assets[0].size == 1234

    def test_release_without_tag(self):
        assert create_release_from_github_data({"assets": []}) is None
        assert create_release_from_github_data([]) is None

    def test_asset_ignores_non_integer_size(self):
        asset = create_asset_from_github_data(
            {"name": "a.tar.gz", "browser_download_url": "https://x/a", "size": "big"}
        )
        assert asset is not None
        assert asset.size is None
