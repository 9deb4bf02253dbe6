from unittest.mock import patch

import pytest

from capnls_client.exceptions import UnsupportedPlatformError
from capnls_client.platform_utils import RELEASE_ARTIFACTS, PlatformId, PlatformUtils


class TestPlatformUtils:
    @pytest.mark.parametrize(
        "system,machine,libc,expected",
        [
            ("Linux", "x86_64", "glibc", PlatformId.LINUX_x64),
            ("Linux", "aarch64", "glibc", PlatformId.LINUX_arm64),
            ("Linux", "x86_64", "musl", PlatformId.LINUX_MUSL_x64),
            ("Darwin", "arm64", "", PlatformId.OSX_arm64),
            ("Windows", "AMD64", "", PlatformId.WIN_x64),
        ],
    )
    def test_get_platform_id(self, system, machine, libc, expected):
        with (
            patch("platform.system", return_value=system),
            patch("platform.machine", return_value=machine),
            patch("platform.architecture", return_value=("64bit", "")),
            patch("platform.libc_ver", return_value=(libc, "")),
        ):
            assert PlatformUtils.get_platform_id() == expected

    def test_unknown_platform(self):
        with patch("platform.system", return_value="Plan9"), patch("platform.machine", return_value="mips"):
            with pytest.raises(UnsupportedPlatformError):
                PlatformUtils.get_platform_id()
            assert PlatformUtils.get_platform_id_or_none() is None

    def test_only_linux_x64_is_eligible_for_download(self):
        assert set(RELEASE_ARTIFACTS) == {PlatformId.LINUX_x64}
        assert PlatformUtils.get_release_artifact(PlatformId.LINUX_x64) == "capnp-ls-linux-x86_64"
        assert PlatformUtils.get_release_artifact(PlatformId.OSX_arm64) is None
        assert PlatformUtils.get_release_artifact(None) is None

    def test_binary_name(self):
        assert PlatformUtils.binary_name(PlatformId.LINUX_x64) == "capnp-ls"
        assert PlatformUtils.binary_name(PlatformId.WIN_arm64) == "capnp-ls.exe"
        assert PlatformUtils.binary_name(None) == "capnp-ls"
