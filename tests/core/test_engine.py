"""
Tests for the Instrumentation Engine.

Verifies:
1. End-to-end output for single units.
2. ID stability across units processed by one engine.
3. Batch processing (ordering, determinism, shared declarations).
4. Per-unit failure isolation.
"""

import textwrap

from sg_instrumenter.config import LOCATION_CALL_TEMPLATE, InstrumenterConfig
from sg_instrumenter.core.engine import InstrumentationEngine
from sg_instrumenter.core.tracer import TraceEventType

STATE = "enum State { Idle, Running, Done }\n"


def rust(code: str) -> str:
  return textwrap.dedent(code).lstrip("\n")


def test_let_then_reassignment():
  code = STATE + rust(
    """
    fn main() {
        let mut s = State::Idle;
        s = State::Running;
    }
    """
  )
  result = InstrumentationEngine().process(code)

  assert result.success
  assert result.code == STATE + rust(
    """
    fn main() {
        let mut s = State::Idle;
        sginstrument::instrument(0);
        s = State::Running;
        sginstrument::instrument(1);
    }
    """
  )
  assert [(s.variant, s.state_id) for s in result.sites] == [("Idle", 0), ("Running", 1)]
  assert result.site_count == 2


def test_opaque_call_uses_wildcard_id():
  code = STATE + rust(
    """
    fn load() -> State { State::Done }
    fn main() {
        let a = load();
        let b = load();
    }
    """
  )
  engine = InstrumentationEngine()
  result = engine.process(code)

  assert [(s.variant, s.state_id) for s in result.sites] == [(None, 0), (None, 0)]
  assert result.code.count("sginstrument::instrument(0);") == 2
  assert engine.allocator.lookup("State", None) == 0


def test_unit_without_sites_is_unchanged():
  code = "fn main() {\n    let x = 1;\n}\n"
  result = InstrumentationEngine().process(code)

  assert result.success
  assert result.code == code
  assert result.sites == []


def test_ids_stable_across_units():
  engine = InstrumentationEngine()
  first = engine.process(STATE + "fn a() { let s = State::Idle; }\n")
  second = engine.process(STATE + "fn b() { let s = State::Running; let t = State::Idle; }\n")

  assert [s.state_id for s in first.sites] == [0]
  assert [s.state_id for s in second.sites] == [1, 0]


def test_ids_stable_across_runs():
  code = STATE + "fn a() { let s = State::Done; let t = State::Idle; }\n"
  assert InstrumentationEngine().process(code).code == InstrumentationEngine().process(code).code


def test_location_template():
  config = InstrumenterConfig(call_template=LOCATION_CALL_TEMPLATE)
  result = InstrumentationEngine(config).process(STATE + "fn a() {\n    let s = State::Idle;\n    let t = State::Idle;\n}\n")

  assert "    sginstrument::instrument(1, 0);\n" in result.code
  assert "    sginstrument::instrument(2, 0);\n" in result.code
  assert [s.location_id for s in result.sites] == [1, 2]


def test_location_ids_absent_by_default():
  result = InstrumentationEngine().process(STATE + "fn a() { let s = State::Idle; }\n")
  assert result.sites[0].location_id is None


def test_process_file(tmp_path):
  path = tmp_path / "main.rs"
  path.write_text(STATE + "fn a() { let s = State::Idle; }\n", encoding="utf-8")

  result = InstrumentationEngine().process(path)
  assert result.success
  assert result.path == str(path)
  assert "sginstrument::instrument(0);" in result.code


def test_parse_failure_reported():
  result = InstrumentationEngine().process("fn broken( {", path="broken.rs")

  assert not result.success
  assert result.has_errors
  assert result.code == ""
  assert "broken.rs:1:" in result.errors[0]


def test_depth_limit_reported_as_failure():
  code = STATE + "fn a() { { { { { { let s = State::Idle; } } } } } }\n"
  result = InstrumentationEngine(InstrumenterConfig(max_depth=5)).process(code)

  assert not result.success
  assert result.errors


def test_deep_nesting_reported_as_failure():
  code = STATE + "fn a() { let s = " + "{" * 1200 + "State::Idle" + "}" * 1200 + "; }\n"
  result = InstrumentationEngine().process(code)

  assert not result.success
  assert "max_depth" in result.errors[0]


def test_unencodable_text_reported_as_failure():
  result = InstrumentationEngine().process(STATE + 'fn a() { let s = State::Idle; let t = "\udc80"; }\n')

  assert not result.success
  assert "not valid UTF-8" in result.errors[0]


def test_trace_records_phases_and_sites():
  result = InstrumentationEngine().process(STATE + "fn a() { let s = State::Idle; }\n")
  events = result.trace_events

  phases = [e["description"] for e in events if e["type"] == TraceEventType.PHASE_START]
  assert phases == ["Load", "Locate", "Plan", "Emit"]
  assert any(e["type"] == TraceEventType.SITE_FOUND for e in events)
  assert any(e["type"] == TraceEventType.INSERTION for e in events)


def test_batch_matches_sequential():
  sources = [
    STATE + "fn a() { let s = State::Done; }\n",
    STATE + "fn b() { let s = State::Idle; let t = State::Done; }\n",
    STATE + "fn c() { let s = State::Running; }\n",
  ]
  config = InstrumenterConfig(jobs=4, share_declarations=False)

  batch = InstrumentationEngine(config).process_batch(sources)
  sequential_engine = InstrumentationEngine(config)
  sequential = [sequential_engine.process(source) for source in sources]

  assert [r.code for r in batch] == [r.code for r in sequential]
  assert [[s.state_id for s in r.sites] for r in batch] == [[0], [1, 0], [2]]


def test_batch_isolates_failures():
  sources = [
    STATE + "fn a() { let s = State::Idle; }\n",
    "fn broken( {",
    STATE + "fn c() { let s = State::Running; }\n",
  ]
  results = InstrumentationEngine(InstrumenterConfig(jobs=2)).process_batch(sources)

  assert [r.success for r in results] == [True, False, True]
  assert results[1].code == ""
  assert [s.state_id for s in results[2].sites] == [1]


def test_batch_isolates_deep_nesting():
  good = STATE + "fn a() { let s = State::Idle; }\n"
  deep = STATE + "fn b() { " + "{" * 1200 + "let s = State::Done;" + "}" * 1200 + " }\n"
  results = InstrumentationEngine(InstrumenterConfig(jobs=2)).process_batch([good, deep, good])

  assert [r.success for r in results] == [True, False, True]
  assert "max_depth" in results[1].errors[0]


class _FailingLocateEngine(InstrumentationEngine):
  """Raises a non-instrumenter error while locating units containing a marker."""

  def locate(self, unit):
    if "// explode" in unit.text:
      raise RuntimeError("locator bug")
    return super().locate(unit)


def test_batch_isolates_unexpected_errors():
  sources = [
    STATE + "fn a() { let s = State::Idle; }\n",
    STATE + "fn b() { let s = State::Done; } // explode\n",
    STATE + "fn c() { let s = State::Running; }\n",
  ]
  results = _FailingLocateEngine(InstrumenterConfig(jobs=2)).process_batch(sources)

  assert [r.success for r in results] == [True, False, True]
  assert "Locate stage failed unexpectedly: RuntimeError: locator bug" in results[1].errors[0]
  assert [s.state_id for s in results[2].sites] == [1]


def test_single_unit_unexpected_error_is_a_failure():
  result = _FailingLocateEngine().process(STATE + "fn b() { let s = State::Done; } // explode\n")

  assert not result.success
  assert "RuntimeError" in result.errors[0]


def test_batch_shares_declarations():
  sources = [
    "pub enum Phase { Init, Ready }\n",
    "use crate::phase::Phase;\nfn run() { let p = Phase::Ready; }\n",
  ]
  shared = InstrumentationEngine(InstrumenterConfig(jobs=2)).process_batch(sources)
  isolated = InstrumentationEngine(InstrumenterConfig(share_declarations=False)).process_batch(sources)

  assert [(s.type_name, s.variant) for s in shared[1].sites] == [("Phase", "Ready")]
  assert isolated[1].sites == []


def test_empty_batch():
  assert InstrumentationEngine().process_batch([]) == []
