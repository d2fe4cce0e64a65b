"""Shared test fixtures: canned tool output and a fake command runner."""

import pytest

from dbus_dump_backends import BackendError, BusType, build_backends, BackendKind


# ============================================================================
# Canned tool output
# ============================================================================

BUSCTL_LIST = """\
:1.0                                  1 systemd         root   :1.0   init.scope               -  -
:1.42                               812 NetworkManager  root   :1.42  NetworkManager.service   -  -
org.freedesktop.DBus                  1 systemd         root   -      init.scope               -  -
org.freedesktop.NetworkManager      812 NetworkManager  root   :1.42  NetworkManager.service   -  -
org.freedesktop.NetworkManager      812 NetworkManager  root   :1.42  NetworkManager.service   -  -
"""

BUSCTL_TREE = """\
└─/org
  └─/org/freedesktop
    └─/org/freedesktop/NetworkManager
      ├─/org/freedesktop/NetworkManager/AgentManager
      └─/org/freedesktop/NetworkManager/Devices
        └─/org/freedesktop/NetworkManager/Devices/1
"""

BUSCTL_INTROSPECT = """\
NAME                                TYPE      SIGNATURE RESULT/VALUE FLAGS
org.freedesktop.DBus.Introspectable interface -         -            -
.Introspect                         method    -         s            -
org.freedesktop.DBus.Properties     interface -         -            -
.Get                                method    ss        v            -
"""

GDBUS_LIST = "(['org.freedesktop.DBus', ':1.0', 'com.acme.Foo', ':1.7'],)\n"

GDBUS_ROOT = """\
node / {
  interface org.freedesktop.DBus.Introspectable {
    methods:
      Introspect(out s xml_data);
  };
  node com {
  };
};
"""

GDBUS_COM = """\
node /com {
  node acme {
  };
};
"""

GDBUS_ACME = """\
node /com/acme {
  node Foo {
  };
  node Broken {
  };
};
"""

GDBUS_FOO = """\
node /com/acme/Foo {
  interface com.acme.Foo {
    methods:
      Ping();
    properties:
      readonly s Name = 'foo';
  };
};
"""

DBUS_SEND_LIST = """\
method return time=1700000000.000000 sender=org.freedesktop.DBus -> destination=:1.99 serial=3 reply_serial=2
   array [
      string "org.freedesktop.DBus"
      string ":1.3"
      string "org.example.A"
   ]
"""

DBUS_SEND_INTROSPECT = """\
method return time=1700000000.000000 sender=:1.5 -> destination=:1.99 serial=7 reply_serial=2
   string "<!DOCTYPE node PUBLIC "-//freedesktop//DTD D-BUS Object Introspection 1.0//EN"
"http://www.freedesktop.org/standards/dbus/1.0/introspect.dtd">
<node>
  <interface name="org.example.A"/>
  <node name="child"/>
</node>
"
"""


# ============================================================================
# Fake runner
# ============================================================================

class FakeRunner:
    """Stands in for CommandRunner. Unknown commands fail like a missing tool."""

    def __init__(self):
        self.responses: dict[tuple[str, ...], object] = {}
        self.calls: list[list[str]] = []

    def on(self, command: list[str], response):
        self.responses[tuple(command)] = response
        return self

    async def run(self, command: list[str]) -> str:
        self.calls.append(command)
        response = self.responses.get(tuple(command))
        if response is None:
            raise BackendError(command[0], "no such command")
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def make_backends(runner):
    def make(*kinds: BackendKind, bus: BusType = BusType.SYSTEM):
        return build_backends(list(kinds), runner, bus)
    return make


def which_from(*tools: str):
    """A shutil.which replacement that only knows about tools."""
    return lambda name: f"/usr/bin/{name}" if name in tools else None
