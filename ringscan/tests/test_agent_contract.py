import pytest

from ringscan.app.agent.contract import (
    AgentTools,
    AllowListedCommands,
    CapabilityDenied,
    DenyAllCommands,
    FileCapability,
)
from ringscan.app.tiers.recording import RecordingTierClient
from ringscan.tests.fakes import CS, EI, FakeTierClient, candidate, stmt


@pytest.fixture
def root(tmp_path):
    (tmp_path / "app").mkdir()
    (tmp_path / "app" / "models.py").write_text("a = 1\nb = 2\nc = 3\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text("[core]\n")
    (tmp_path / "README.md").write_text("readme\n")
    return tmp_path


def test_listing_skips_hidden_directories(root):
    assert FileCapability(root).list_files() == ["README.md", "app/models.py"]


def test_listing_is_capped(root):
    assert FileCapability(root, max_listing=1).list_files() == ["README.md"]


def test_read_file_returns_numbered_excerpt(root):
    excerpt = FileCapability(root).read_file("app/models.py", start_line=2, end_line=3)

    assert excerpt == "    2: b = 2\n    3: c = 3"


@pytest.mark.parametrize("path", ["../outside.txt", "app/../../outside.txt", "/etc/passwd"])
def test_paths_outside_the_root_are_denied(root, path):
    (root.parent / "outside.txt").write_text("secret\n")

    with pytest.raises(CapabilityDenied):
        FileCapability(root).read_file(path)


def test_missing_file_is_not_found(root):
    with pytest.raises(FileNotFoundError):
        FileCapability(root).read_file("app/nope.py")


def test_policies():
    assert DenyAllCommands().approves(["ls"]) is False
    assert AllowListedCommands().approves(["grep", "-rn", "ssn", "."]) is True
    assert AllowListedCommands().approves(["rm", "-rf", "."]) is False
    assert AllowListedCommands().approves([]) is False


@pytest.mark.anyio
async def test_commands_are_denied_by_default(root):
    with pytest.raises(CapabilityDenied):
        await FileCapability(root).run_command(["ls"])


@pytest.mark.anyio
async def test_approved_command_runs_in_the_scan_root(root):
    capability = FileCapability(root, policy=AllowListedCommands(["ls"]))

    output = await capability.run_command(["ls"])

    assert "README.md" in output.split()
    assert "app" in output.split()


@pytest.mark.anyio
async def test_tools_expose_only_live_tiers_and_collect_candidates():
    tools = AgentTools(
        {
            EI: RecordingTierClient(FakeTierClient(EI, [stmt(EI, "x must be y")]), timeout=1.0),
            CS: RecordingTierClient(FakeTierClient(CS), timeout=1.0),
        }
    )

    assert tools.available_tiers == [CS, EI]

    result = await tools.query_tier(EI, "q")
    assert result.outcome == "success"

    tools.report_violation(candidate("x"))
    reported = tools.reported
    reported.clear()
    assert len(tools.reported) == 1
