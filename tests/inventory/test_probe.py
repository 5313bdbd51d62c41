import paramiko

from romulus.inventory.probe import SSHProbe, private_key_for
from romulus.observers.events import NodeReachable, NodeUnreachable
from romulus.state.resources import Domain


class FakeClient:
    """paramiko.SSHClient stand-in; fails the first `failures` connects."""

    connects = []

    def __init__(self, failures=0):
        self.failures = failures
        self.closed = False

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def connect(self, **kwargs):
        FakeClient.connects.append(kwargs)
        if len(FakeClient.connects) <= self.failures:
            raise paramiko.SSHException("connection refused")

    def close(self):
        self.closed = True


def _factory(failures):
    FakeClient.connects = []
    return lambda: FakeClient(failures)


def _node(ip="10.10.10.21"):
    return Domain(name="k8s-worker-1", ip_address=ip)


def test_node_reachable_after_retries(capture):
    probe = SSHProbe(
        "debian", attempts=5, delay=0, observers=[capture],
        client_factory=_factory(2), sleep=lambda s: None,
    )
    result = probe.wait_for(_node())

    assert result.reachable is True
    assert result.attempts == 3
    assert FakeClient.connects[-1]["hostname"] == "10.10.10.21"
    assert FakeClient.connects[-1]["username"] == "debian"
    assert isinstance(capture.events[-1], NodeReachable)


def test_node_unreachable_emits_event(capture):
    probe = SSHProbe(
        "debian", attempts=2, delay=0, observers=[capture],
        client_factory=_factory(99), sleep=lambda s: None,
    )
    result = probe.wait_for(_node())

    assert result.reachable is False
    assert result.attempts == 2
    assert "after 2 attempts" in result.error
    assert isinstance(capture.events[-1], NodeUnreachable)


def test_node_without_address_is_not_probed():
    probe = SSHProbe("debian", client_factory=_factory(0), sleep=lambda s: None)
    result = probe.wait_for(_node(ip=None))
    assert result.reachable is False
    assert FakeClient.connects == []


def test_wait_all_keys_results_by_name():
    probe = SSHProbe("debian", attempts=1, client_factory=_factory(0), sleep=lambda s: None)
    results = probe.wait_all([_node(), Domain(name="k8s-worker-2", ip_address="10.10.10.22")])
    assert set(results) == {"k8s-worker-1", "k8s-worker-2"}
    assert all(r.reachable for r in results.values())


def test_private_key_for(tmp_path):
    pub = tmp_path / "id_ed25519.pub"
    pub.write_text("ssh-ed25519 AAAA")
    assert private_key_for(str(pub)) is None
    (tmp_path / "id_ed25519").write_text("PRIVATE")
    assert private_key_for(str(pub)) == str(tmp_path / "id_ed25519")
