import os
import stat
from types import SimpleNamespace

import pytest

from hostkit import passwd, safety
from hostkit.confirm import Confirmer
from hostkit.errors import PipelineAborted, PreconditionError
from hostkit.model import PasswdConfig


class RunRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((list(cmd), kwargs.get("input_text")))
        return SimpleNamespace(rc=0, out="", err="")


@pytest.fixture
def recorder(monkeypatch):
    rec = RunRecorder()
    monkeypatch.setattr(passwd, "run", rec)
    monkeypatch.setattr(safety, "require_root", lambda: None)
    monkeypatch.setattr(safety, "require_commands", lambda cmds: None)
    return rec


def test_generated_password_uses_alphabet():
    pw = passwd.generate_password(32)
    assert len(pw) == 32
    assert set(pw) <= set(passwd.ALPHABET)
    with pytest.raises(PreconditionError):
        passwd.generate_password(0)


def test_rotation_feeds_chpasswd_and_writes_private_file(recorder, tmp_path):
    out = tmp_path / "root-password.txt"
    result = passwd.rotate_password(PasswdConfig(output=str(out)), Confirmer(lambda p: "y"))
    stored = out.read_text(encoding="utf-8").rstrip("\n")
    assert len(stored) == 16
    assert stat.S_IMODE(os.stat(out).st_mode) == 0o600
    assert recorder.calls == [(["chpasswd"], f"root:{stored}\n")]
    assert result["user"] == "root"


def test_existing_file_is_truncated(tmp_path):
    out = tmp_path / "pw.txt"
    out.write_text("a much longer previous password value\n", encoding="utf-8")
    os.chmod(out, 0o644)
    passwd.save_password(str(out), "short")
    assert out.read_text(encoding="utf-8") == "short\n"
    assert stat.S_IMODE(os.stat(out).st_mode) == 0o600


def test_decline_changes_nothing(recorder, tmp_path):
    out = tmp_path / "root-password.txt"
    with pytest.raises(PipelineAborted) as excinfo:
        passwd.rotate_password(PasswdConfig(output=str(out)), Confirmer(lambda p: ""))
    assert excinfo.value.exit_code == 0
    assert recorder.calls == []
    assert not out.exists()
