"""In-memory stand-in for systemctl, iptables and ip used by the hardening tests."""

from types import SimpleNamespace

DEFAULT_POLICIES = {"INPUT": "ACCEPT", "FORWARD": "ACCEPT", "OUTPUT": "ACCEPT"}


class FakeHost:
    def __init__(self, unit_files=(), active=(), interfaces=("lo", "eth0", "wlan0")):
        self.unit_files = set(unit_files)
        self.active = set(active)
        self.masked = set()
        self.enabled = set(unit_files)
        self.interfaces = list(interfaces)
        self.link_state = {name: "up" for name in interfaces}
        self.policies = dict(DEFAULT_POLICIES)
        self.rules = ["-A INPUT -p tcp --dport 22 -j ACCEPT"]
        self.calls = []

    def snapshot(self):
        return dict(self.policies), list(self.rules)

    def save(self):
        lines = ["*filter"]
        lines += [f":{chain} {policy} [0:0]" for chain, policy in self.policies.items()]
        lines += self.rules
        lines.append("COMMIT")
        return "\n".join(lines) + "\n"

    def restore(self, text):
        self.rules = []
        for line in text.splitlines():
            if line.startswith(":"):
                chain, policy = line[1:].split()[:2]
                self.policies[chain] = policy
            elif line.startswith("-A "):
                self.rules.append(line)

    def _ok(self, out="", rc=0):
        return SimpleNamespace(rc=rc, out=out, err="")

    def _systemctl(self, args):
        verb = args[0]
        if verb == "list-unit-files":
            return self._ok("".join(f"{u} enabled\n" for u in sorted(self.unit_files)))
        if verb == "status":
            return self._ok(rc=0 if args[-1] in self.active else 4)
        if verb == "is-active":
            return self._ok(rc=0 if args[-1] in self.active else 3)
        if verb == "is-enabled":
            return self._ok(rc=0 if args[-1] in self.enabled else 1)
        unit = args[-1]
        if verb == "disable":
            self.enabled.discard(unit)
            self.active.discard(unit)
        elif verb == "mask":
            self.masked.add(unit)
        elif verb == "unmask":
            self.masked.discard(unit)
        elif verb == "enable":
            self.enabled.add(unit)
            self.active.add(unit)
        return self._ok()

    def _iptables(self, args):
        flag = args[0]
        if flag == "-P":
            self.policies[args[1]] = args[2]
        elif flag == "-F":
            self.rules = []
        elif flag == "-A":
            self.rules.append(" ".join(args))
        return self._ok()

    def __call__(self, cmd, **_: object):
        cmd = list(cmd)
        self.calls.append(cmd)
        name, args = cmd[0], cmd[1:]
        if name == "systemctl":
            return self._systemctl(args)
        if name == "iptables":
            return self._iptables(args)
        if name == "iptables-save":
            return self._ok(self.save())
        if name == "iptables-restore":
            with open(args[0], "r", encoding="utf-8") as fh:
                self.restore(fh.read())
            return self._ok()
        if name == "ip" and args[:3] == ["-o", "link", "show"]:
            lines = [f"{i + 1}: {n}: <BROADCAST,UP> mtu 1500 state UP" for i, n in enumerate(self.interfaces)]
            return self._ok("\n".join(lines) + "\n")
        if name == "ip" and args[:2] == ["link", "set"]:
            self.link_state[args[2]] = args[3]
            return self._ok()
        if name == "logname":
            return self._ok(rc=1)
        return self._ok()

    def ran(self, *prefix):
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]
