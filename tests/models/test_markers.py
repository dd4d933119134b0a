import pytest

from depresolver.exceptions import RequirementError
from depresolver.models.markers import evaluate, get_marker


@pytest.mark.parametrize(
    "marker,expected",
    [
        ("python_version >= '3.8'", True),
        ("python_version < '3.10'", False),
        ("python_full_version == '3.11.4'", True),
        ("python_version > '3'", True),
        ("sys_platform == 'linux'", True),
        ("sys_platform == 'win32' or os_name == 'posix'", True),
        ("sys_platform == 'win32' and python_version >= '3.8'", False),
        ("(os_name == 'nt' or os_name == 'posix') and platform_machine == 'x86_64'", True),
        ("platform_system != 'Windows'", True),
        ("'linux' in sys_platform", True),
        ("platform_machine not in 'arm64 aarch64'", True),
        ("implementation_name == 'cpython'", True),
        ("platform_python_implementation == 'PyPy'", False),
        ("os.name == 'posix'", True),
    ],
)
def test_evaluate_marker(environment, marker, expected):
    assert evaluate(marker, environment) is expected


def test_missing_marker_always_applies(environment):
    assert evaluate(None, environment)


@pytest.mark.parametrize(
    "marker",
    [
        "python_version >= ",
        "os_name = 'nt'",
        "(python_version > '3.8'",
        "",
    ],
)
def test_unparsable_marker_does_not_apply(environment, marker):
    assert evaluate(marker, environment) is False


def test_get_marker_raises_requirement_error():
    with pytest.raises(RequirementError):
        get_marker("python_version ~ '3'")


def test_unknown_variable_is_false(environment):
    assert evaluate("python_implementation == 'CPython'", environment) is False
    assert evaluate("python_implementation != 'CPython'", environment) is False


def test_unapplicable_operator_is_false(environment):
    assert evaluate("sys_platform ~= 'linux'", environment) is False


@pytest.mark.parametrize(
    "marker,extras,expected",
    [
        ('extra == "socks"', {"socks"}, True),
        ('extra == "socks"', set(), False),
        ('extra == "Socks_Proxy"', {"socks-proxy"}, True),
        ('extra != "socks"', {"socks"}, False),
        ('python_version >= "3.8" and extra == "test"', {"test", "doc"}, True),
    ],
)
def test_evaluate_extra_marker(environment, marker, extras, expected):
    assert evaluate(marker, environment, extras) is expected


def test_marker_operations():
    m1 = get_marker("os_name == 'nt'")
    m2 = get_marker("python_version >= '3.8'")
    assert str(m1 & m2) == 'os_name == "nt" and python_version >= "3.8"'
    assert str(m1 | m2) == 'os_name == "nt" or python_version >= "3.8"'
    assert str((m1 | m2) & get_marker("sys_platform == 'linux'")) == (
        '(os_name == "nt" or python_version >= "3.8") and sys_platform == "linux"'
    )
    assert m1 & None is m1
    assert None & m1 is m1


def test_marker_variables():
    marker = get_marker("os_name == 'nt' and (extra == 'a' or python_version < '3.9')")
    assert marker.variables == {"os_name", "extra", "python_version"}
    assert marker.has_extras()
    assert not get_marker("os_name == 'nt'").has_extras()


def test_evaluate_against_mapping():
    assert evaluate("os_name == 'nt'", {"os_name": "nt"})
    assert not evaluate("os_name == 'nt'", {})
