from svcproxy.backendcmd import UseCmd, register, registered


class _Backend:
    def sink(self):
        return "sink"


def test_register_appends_entry():
    before = len(registered())
    register("to-test", _Backend)
    entries = registered()
    assert len(entries) == before + 1
    assert entries[-1] == UseCmd(use="to-test", new=_Backend)
    assert isinstance(entries[-1].new(), _Backend)


def test_registration_order_is_kept():
    register("first-cmd", _Backend)
    register("second-cmd", _Backend)
    assert [e.use for e in registered()[-2:]] == ["first-cmd", "second-cmd"]


def test_registered_returns_a_copy():
    register("copy-check", _Backend)
    entries = registered()
    entries.clear()
    assert registered()[-1].use == "copy-check"