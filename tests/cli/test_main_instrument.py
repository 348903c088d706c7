"""
Tests for the CLI 'instrument' and 'scan' commands.

Verifies that:
1.  Arguments are dispatched to the command handlers.
2.  Files and crate directories are instrumented to --out or in place.
3.  The ID map and trace files are written.
4.  Failures produce a non-zero exit code without aborting other files.
"""

import json
from unittest.mock import patch

from sg_instrumenter.cli.__main__ import main
from sg_instrumenter.cli.handlers import collect_sources

STATE = "enum State { Idle, Busy }\n"
USES = "fn run() {\n    let s = State::Busy;\n}\n"


def make_crate(root):
  src = root / "crate" / "src"
  src.mkdir(parents=True)
  (src / "state.rs").write_text(STATE, encoding="utf-8")
  (src / "main.rs").write_text("use crate::state::State;\n" + USES, encoding="utf-8")
  return root / "crate"


@patch("sg_instrumenter.cli.commands.handle_instrument")
def test_instrument_dispatch(mock_handle, tmp_path):
  mock_handle.return_value = 0
  assert main(["instrument", str(tmp_path), "--in-place", "--jobs", "3", "--config", "validate_output=false"]) == 0

  args, kwargs = mock_handle.call_args
  assert args[1] is None
  assert args[2] is True
  assert args[3] == 3
  assert args[4] == {"validate_output": False}
  assert kwargs["run_rustfmt"] is False


@patch("sg_instrumenter.cli.commands.handle_scan")
def test_scan_dispatch(mock_handle, tmp_path):
  mock_handle.return_value = 0
  main(["scan", str(tmp_path)])
  mock_handle.assert_called_once_with(tmp_path, {})


def test_bad_config_flag(tmp_path, captured_console):
  assert main(["instrument", str(tmp_path), "--config", "jobs"]) == 1
  assert "Expected 'key=value'" in captured_console.getvalue()


def test_single_file_to_stdout(tmp_path, capsys):
  path = tmp_path / "main.rs"
  path.write_text(STATE + USES, encoding="utf-8")

  assert main(["instrument", str(path)]) == 0
  assert "    sginstrument::instrument(0);\n" in capsys.readouterr().out
  assert path.read_text(encoding="utf-8") == STATE + USES


def test_directory_requires_destination(tmp_path, captured_console):
  crate = make_crate(tmp_path)
  assert main(["instrument", str(crate)]) == 1
  assert "--out" in captured_console.getvalue()


def test_directory_to_out_with_id_map_and_trace(tmp_path, captured_console):
  crate = make_crate(tmp_path)
  out = tmp_path / "out"
  id_map = tmp_path / "ids.json"
  trace = tmp_path / "trace.json"

  exit_code = main(
    ["instrument", str(crate), "--out", str(out), "--jobs", "2", "--id-map", str(id_map), "--json-trace", str(trace)]
  )
  assert exit_code == 0

  written = (out / "src" / "main.rs").read_text(encoding="utf-8")
  assert written == "use crate::state::State;\nfn run() {\n    let s = State::Busy;\n    sginstrument::instrument(0);\n}\n"
  assert (out / "src" / "state.rs").read_text(encoding="utf-8") == STATE

  ids = json.loads(id_map.read_text(encoding="utf-8"))
  assert ids["call_template"] == "sginstrument::instrument({state_id});"
  assert ids["ids"] == [{"id": 0, "type": "State", "variant": "Busy"}]

  events = json.loads(trace.read_text(encoding="utf-8"))
  assert set(events) == {"src/main.rs", "src/state.rs"}
  assert "Batch Complete" in captured_console.getvalue()


def test_in_place_and_failures(tmp_path, captured_console):
  crate = make_crate(tmp_path)
  broken = crate / "src" / "broken.rs"
  broken.write_text("fn broken( {", encoding="utf-8")

  assert main(["instrument", str(crate), "--in-place"]) == 1

  assert "sginstrument::instrument(0);" in (crate / "src" / "main.rs").read_text(encoding="utf-8")
  assert broken.read_text(encoding="utf-8") == "fn broken( {"
  output = captured_console.getvalue()
  assert "Instrumentation Report" in output
  assert "1 Failed" in output


def test_missing_rustfmt_only_warns(tmp_path, captured_console):
  path = tmp_path / "main.rs"
  path.write_text(STATE + USES, encoding="utf-8")

  with patch("sg_instrumenter.cli.handlers.instrument.shutil.which", return_value=None):
    assert main(["instrument", str(path), "--in-place", "--rustfmt"]) == 0
  assert "rustfmt not found" in captured_console.getvalue()


def test_collect_sources_skips_build_and_hidden_dirs(tmp_path):
  for rel in ["src/b.rs", "src/a.rs", "target/debug/gen.rs", ".git/hook.rs", "src/notes.txt"]:
    path = tmp_path / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("", encoding="utf-8")

  found = collect_sources(tmp_path, [".rs"])
  assert [p.relative_to(tmp_path).as_posix() for p in found] == ["src/a.rs", "src/b.rs"]


def test_scan_lists_sites(tmp_path, captured_console):
  crate = make_crate(tmp_path)

  assert main(["scan", str(crate)]) == 0
  output = captured_console.getvalue()
  assert "Enum Assignment Sites" in output
  assert "Busy" in output
  assert "State" in output
  assert "[enum]" not in output
  assert "Found 1 sites in 2 files" in output
  assert (crate / "src" / "main.rs").read_text(encoding="utf-8").count("sginstrument") == 0
