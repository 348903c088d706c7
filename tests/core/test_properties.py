"""
Property tests over generated inputs.

Verifies:
1. Allocator: same key -> same ID, distinct keys -> distinct IDs, first-seen order.
2. Rewriting only inserts: stripping the inserted calls restores the input.
3. Every enum assignment gets exactly one call, with the variant's ID.
"""

from typing import Dict, List, Optional, Tuple

from hypothesis import given, settings, strategies as st

from sg_instrumenter import instrument
from sg_instrumenter.core.allocator import IdentifierAllocator

VARIANTS = ["Idle", "Busy", "Done", "Failed"]
ENUM = "enum State { Idle, Busy, Done, Failed }\n"

keys = st.tuples(st.sampled_from(["State", "Mode", "Phase"]), st.one_of(st.none(), st.sampled_from(VARIANTS)))

# A statement is either an enum reassignment (variant) or an unrelated integer store (None).
statements = st.lists(st.one_of(st.none(), st.sampled_from(VARIANTS)), max_size=12)


@given(requests=st.lists(keys, max_size=40))
@settings(max_examples=50)
def test_allocator_is_a_first_seen_numbering(requests: List[Tuple[str, Optional[str]]]):
  alloc = IdentifierAllocator()
  issued = [alloc.allocate(*key) for key in requests]

  expected: Dict[Tuple[str, Optional[str]], int] = {}
  for key in requests:
    expected.setdefault(key, len(expected))

  assert issued == [expected[key] for key in requests]
  assert len(alloc) == len(expected)


def render(body: List[Optional[str]]) -> str:
  lines = ["fn run(n: u32) {", "    let mut s = State::Idle;", "    let mut k = 0;"]
  for variant in body:
    lines.append(f"    s = State::{variant};" if variant else "    k = k + n;")
  lines.append("}")
  return ENUM + "\n".join(lines) + "\n"


@given(body=statements)
@settings(max_examples=30, deadline=None)
def test_rewrite_only_inserts_calls(body: List[Optional[str]]):
  code = render(body)
  output = instrument(code)

  kept = [line for line in output.split("\n") if not line.startswith("    sginstrument::instrument(")]
  assert "\n".join(kept) == code


@given(body=statements)
@settings(max_examples=30, deadline=None)
def test_one_call_per_enum_assignment(body: List[Optional[str]]):
  output = instrument(render(body)).split("\n")

  order: Dict[str, int] = {}
  for line, following in zip(output, output[1:]):
    if line.startswith("    s = State::") or line.startswith("    let mut s = State::"):
      variant = line.rsplit("::", 1)[1].rstrip(";")
      state_id = order.setdefault(variant, len(order))
      assert following == f"    sginstrument::instrument({state_id});"

  calls = [line for line in output if line.startswith("    sginstrument::instrument(")]
  assert len(calls) == 1 + sum(1 for variant in body if variant)
