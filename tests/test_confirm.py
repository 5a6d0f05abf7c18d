import pytest

from hostkit.confirm import Confirmer
from hostkit.errors import ConfirmationDeclined, FailureKind


def scripted(*answers):
    queue = list(answers)
    prompts = []

    def reader(prompt):
        prompts.append(prompt)
        return queue.pop(0)

    reader.prompts = prompts
    return reader


def test_literal_gate_rejects_lowercase_yes():
    assert not Confirmer(scripted("yes")).literal("Type YES: ")
    assert not Confirmer(scripted("Yes")).literal("Type YES: ")
    assert not Confirmer(scripted("y")).literal("Type YES: ")


def test_literal_gate_accepts_exact_yes():
    assert Confirmer(scripted("YES")).literal("Type YES: ")
    assert Confirmer(scripted("  YES\n")).literal("Type YES: ")


def test_literal_gate_ignores_assume_yes():
    confirmer = Confirmer(scripted("no"), assume_yes=True)
    assert not confirmer.literal("Type YES: ")


@pytest.mark.parametrize("answer", ["y", "Y"])
def test_yes_no_accepts_only_single_y(answer):
    assert Confirmer(scripted(answer)).yes_no("Continue? [y/N]: ")


@pytest.mark.parametrize("answer", ["yes", "YES", "n", "N", "ok", "1", " yy"])
def test_yes_no_rejects_everything_else(answer):
    assert not Confirmer(scripted(answer)).yes_no("Continue? [y/N]: ")


def test_yes_no_empty_answer_returns_default():
    assert not Confirmer(scripted("")).yes_no("Continue? [y/N]: ")
    assert Confirmer(scripted("")).yes_no("Bring up? [Y/n]: ", default=True)
    assert not Confirmer(scripted("n")).yes_no("Bring up? [Y/n]: ", default=True)


def test_assume_yes_skips_optional_but_not_destructive_gate():
    reader = scripted("n")
    confirmer = Confirmer(reader, assume_yes=True)
    assert confirmer.yes_no("Disable IPv6? [y/N]: ")
    assert reader.prompts == []
    assert not confirmer.yes_no("Erase /dev/sdz? [y/N]: ", destructive=True)
    assert reader.prompts == ["Erase /dev/sdz? [y/N]: "]


def test_eof_counts_as_decline():
    def reader(prompt):
        raise EOFError

    confirmer = Confirmer(reader)
    assert confirmer.ask("name: ") is None
    assert not confirmer.literal("Type YES: ")
    assert not confirmer.yes_no("Continue? [y/N]: ", default=True)


def test_require_literal_declines_with_exit_one():
    with pytest.raises(ConfirmationDeclined) as excinfo:
        Confirmer(scripted("yes")).require_literal("Type YES: ", "formatting")
    assert excinfo.value.exit_code == 1
    assert excinfo.value.kind == FailureKind.DECLINED


def test_require_yes_declines_with_exit_zero():
    with pytest.raises(ConfirmationDeclined) as excinfo:
        Confirmer(scripted("")).require_yes("Continue? [y/N]: ", "writing")
    assert excinfo.value.exit_code == 0
    Confirmer(scripted("Y")).require_yes("Continue? [y/N]: ", "writing")


def test_ctrl_c_is_not_a_decline():
    def reader(prompt):
        raise KeyboardInterrupt

    confirmer = Confirmer(reader)
    with pytest.raises(KeyboardInterrupt):
        confirmer.require_yes("Continue? [y/N]: ", "writing /dev/sdz")
