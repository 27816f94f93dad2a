import pytest

from nodestats.system import (
    CmdlineArg,
    Module,
    cmdline_args,
    contains_module,
    modules,
    read_file_into_lines,
)

COS_CMDLINE = (
    "BOOT_IMAGE=/syslinux/vmlinuz.A init=/usr/lib/systemd/systemd boot=local rootwait ro "
    "noresume noswap loglevel=7 noinitrd console=ttyS0 cros_efi root=/dev/dm-0 "
    'dm="1 vroot none ro 1,0 4077568 verity payload=/dev/sda3 hashtree=/dev/sda3 '
    'hashstart=4077568 alg=sha256"'
)

SAMPLE_CMDLINE = 'key1=value1 key2 key3="value2 value3"'

COS_MODULES = """crypto_simd 16384 1 aesni_intel, Live 0x0000000000000000
virtio_balloon 24576 0 - Live 0x0000000000000000
cryptd 24576 1 crypto_simd, Live 0x0000000000000000
loadpin_trigger 12288 0 - Live 0x0000000000000000 (O)
"""

UBUNTU_MODULES = """drm 491520 0 - Live 0x0000000000000000
virtio_rng 16384 0 - Live 0x0000000000000000
x_tables 40960 1 ip_tables, Live 0x0000000000000000
autofs4 45056 2 - Live 0x0000000000000000
"""


def _write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)
    return str(path)


@pytest.mark.parametrize(
    "content, expected, unexpected",
    [
        (
            COS_CMDLINE,
            [CmdlineArg("console", "ttyS0"), CmdlineArg("boot", "local"), CmdlineArg("cros_efi")],
            [CmdlineArg("hashstart", "4077568"), CmdlineArg("vroot")],
        ),
        (
            SAMPLE_CMDLINE,
            [CmdlineArg("key1", "value1"), CmdlineArg("key3", "value2 value3"), CmdlineArg("key2")],
            [CmdlineArg("value2", "value3"), CmdlineArg("value3")],
        ),
    ],
)
def test_cmdline_args(tmp_path, content, expected, unexpected):
    args = cmdline_args(_write(tmp_path, "cmdline", content + "\n"))
    for arg in expected:
        assert arg in args
    for arg in unexpected:
        assert arg not in args


def test_cmdline_arg_string():
    assert str(CmdlineArg(key="test", value="test")) == '{"key":"test","value":"test"}'


def test_cmdline_skips_words_starting_with_quote(tmp_path):
    args = cmdline_args(_write(tmp_path, "cmdline", 'a=1 "b=2 c=3" d\n'))
    assert args == [CmdlineArg("a", "1"), CmdlineArg("d")]


def test_cmdline_empty_file_raises(tmp_path):
    with pytest.raises(ValueError):
        cmdline_args(_write(tmp_path, "cmdline", ""))


def test_cmdline_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        cmdline_args(str(tmp_path / "missing"))


@pytest.mark.parametrize(
    "content, expected",
    [
        (
            COS_MODULES,
            [
                Module("crypto_simd", 1, False, False, False),
                Module("virtio_balloon", 0, False, False, False),
                Module("cryptd", 1, False, False, False),
                Module("loadpin_trigger", 0, False, True, False),
            ],
        ),
        (
            UBUNTU_MODULES,
            [
                Module("drm", 0, False, False, False),
                Module("virtio_rng", 0, False, False, False),
                Module("x_tables", 1, False, False, False),
                Module("autofs4", 2, False, False, False),
            ],
        ),
    ],
)
def test_modules(tmp_path, content, expected):
    assert modules(_write(tmp_path, "modules", content)) == expected


def test_module_taint_flags(tmp_path):
    path = _write(tmp_path, "modules", "nvidia 100 3 - Live 0x0 (POE)\n")
    assert modules(path) == [Module("nvidia", 3, True, True, True)]


def test_module_string():
    module = Module(module_name="test", instances=2, out_of_tree=False, unsigned=False)
    expected = '{"moduleName":"test","instances":2,"proprietary":false,"outOfTree":false,"unsigned":false}'
    assert str(module) == expected


def test_module_from_dict_round_trip():
    module = Module("ext", 4, True, False, True)
    assert Module.from_dict(module.to_dict()) == module


def test_contains_module():
    values = [Module("a"), Module("b")]
    assert contains_module("b", values) is True
    assert contains_module("c", values) is False


def test_read_file_into_lines_strips_terminators(tmp_path):
    path = _write(tmp_path, "f", "one\r\ntwo\nthree")
    assert read_file_into_lines(path) == ["one", "two", "three"]