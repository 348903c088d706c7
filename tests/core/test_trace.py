"""
Tests for the Tracing System.
"""

import json

from sg_instrumenter.core.tracer import TraceEventType, TraceLogger


def test_phase_nesting():
  logger = TraceLogger()

  p1 = logger.start_phase("Parent")
  logger.start_phase("Child")
  logger.end_phase()  # End Child
  logger.end_phase()  # End Parent

  events = logger.export()

  # 4 events: Start P, Start C, End C, End P
  assert len(events) == 4
  assert events[0]["type"] == TraceEventType.PHASE_START
  assert events[1]["parent_id"] == p1
  assert events[2]["type"] == TraceEventType.PHASE_END


def test_unbalanced_end_is_ignored():
  logger = TraceLogger()
  logger.end_phase()
  assert logger.export() == []


def test_site_and_insertion_metadata():
  logger = TraceLogger()
  phase = logger.start_phase("Plan", "main.rs")
  logger.log_site("State", None, "assign", 12)
  logger.log_insertion(40, "\n    sginstrument::instrument(3);", 3)
  logger.end_phase()

  events = logger.export()
  site, insertion = events[1], events[2]

  assert site["type"] == TraceEventType.SITE_FOUND
  assert site["description"] == "Found State::* at line 12"
  assert site["parent_id"] == phase
  assert site["metadata"] == {"type": "State", "variant": None, "kind": "assign", "line": 12}
  assert insertion["metadata"]["state_id"] == 3
  assert insertion["metadata"]["offset"] == 40


def test_export_is_json_serializable():
  logger = TraceLogger()
  logger.log_warning("Locate failed: boom")

  decoded = json.loads(json.dumps(logger.export()))
  assert decoded[0]["type"] == "analysis_warning"
  assert decoded[0]["metadata"] == {"level": "warning"}
