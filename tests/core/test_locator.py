"""
Tests for the Site Locator.

Verifies which statement shapes become sites, in which order, and how scopes,
patterns and constant contexts influence resolution.
"""

import pytest

from sg_instrumenter.enums import SiteKind
from sg_instrumenter.errors import AnalysisError

ENUM = "enum State { Idle, Busy, Done }\n"


def summary(sites):
  return [(s.kind, s.enum.name, s.variant) for s in sites]


def rust_lines(*lines: str) -> str:
  return "\n".join(lines) + "\n"


def test_let_and_reassignment(locate):
  sites = locate(
    ENUM
    + """
fn run() {
    let mut s = State::Idle;
    s = State::Busy;
}
"""
  )
  assert summary(sites) == [
    (SiteKind.LET, "State", "Idle"),
    (SiteKind.ASSIGN, "State", "Busy"),
  ]
  assert [s.line for s in sites] == [4, 5]


def test_sites_are_lazy_generator(load_linked):
  from sg_instrumenter.core.locator import SiteLocator

  unit = load_linked(ENUM + "fn run() { let s = State::Idle; let t = State::Done; }")
  iterator = SiteLocator().locate(unit)

  assert next(iterator).variant == "Idle"
  assert next(iterator).variant == "Done"
  with pytest.raises(StopIteration):
    next(iterator)


def test_field_deref_and_compound(locate):
  code = (
    ENUM
    + """
struct Machine { state: State, count: u32 }
impl Machine {
    fn go(&mut self, slot: &mut State, flags: State) {
        self.state = State::Busy;
        self.count = 3;
        *slot = State::Done;
        let mut f = flags;
        f |= other();
    }
}
"""
  )
  assert summary(locate(code)) == [
    (SiteKind.FIELD_ASSIGN, "State", "Busy"),
    (SiteKind.DEREF_ASSIGN, "State", "Done"),
    (SiteKind.LET, "State", None),
    (SiteKind.COMPOUND_ASSIGN, "State", None),
  ]


def test_place_typed_when_value_is_opaque(locate):
  code = (
    ENUM
    + """
struct Machine { state: State }
fn run(m: &mut Machine, raw: u8) {
    m.state = decode(raw);
}
"""
  )
  assert summary(locate(code)) == [(SiteKind.FIELD_ASSIGN, "State", None)]


def test_let_annotation_types_opaque_value(locate):
  sites = locate(ENUM + "fn run() { let s: State = external::load(); }")
  assert summary(sites) == [(SiteKind.LET, "State", None)]


def test_opaque_function_and_method_calls(locate):
  code = (
    ENUM
    + """
fn pick() -> State { State::Done }
impl State { fn new() -> Self { State::Idle } fn next(&self) -> State { State::Busy } }
fn run() {
    let a = pick();
    let b = State::new();
    let c = a.next();
}
"""
  )
  assert summary(locate(code)) == [
    (SiteKind.LET, "State", None),
    (SiteKind.LET, "State", None),
    (SiteKind.LET, "State", None),
  ]


def test_tail_match_arm_and_closure(locate):
  code = (
    ENUM
    + """
fn run(go: bool, s: &mut State) {
    if go { *s = State::Busy }
    match go {
        true => *s = State::Done,
        false => {}
    }
    let mut t = State::Idle;
    let mut set = || t = State::Busy;
    set();
}
"""
  )
  assert summary(locate(code)) == [
    (SiteKind.TAIL_ASSIGN, "State", "Busy"),
    (SiteKind.MATCH_ARM, "State", "Done"),
    (SiteKind.LET, "State", "Idle"),
    (SiteKind.CLOSURE_BODY, "State", "Busy"),
  ]


def test_match_arm_bindings(locate):
  code = (
    ENUM
    + """
fn run(cur: State) {
    let mut last = State::Idle;
    match cur {
        s @ State::Busy => last = s,
        other => last = other,
    }
}
"""
  )
  assert summary(locate(code))[1:] == [
    (SiteKind.MATCH_ARM, "State", None),
    (SiteKind.MATCH_ARM, "State", None),
  ]


def test_shadowing_hides_enum_binding(locate):
  shadowed = ENUM + "fn run(s: State) { let s = 5; let t = s; }"
  visible = ENUM + "fn run(s: State) { let t = s; }"

  assert locate(shadowed) == []
  assert summary(locate(visible)) == [(SiteKind.LET, "State", None)]


def test_generic_parameter_hides_enum_name(locate):
  generic = ENUM + "fn run<State: Copy>(s: State) { let t = s; let u: State = s; }"
  concrete = ENUM + "fn run(s: State) { let t = s; }"

  assert locate(generic) == []
  assert summary(locate(concrete)) == [(SiteKind.LET, "State", None)]


def test_struct_and_impl_generics_hide_enum_name(locate):
  code = ENUM + rust_lines(
    "struct Holder<State> { inner: State }",
    "impl<State> Holder<State> { fn get(&self) -> &State { &self.inner } fn take(self) -> State { self.inner } }",
    "fn run(h: Holder<u8>) { let x = h.inner; let y = h.take(); }",
  )
  assert locate(code) == []


def test_let_else_is_a_site(locate):
  sites = locate(ENUM + "fn run(s: State) { let State::Busy = s else { return; }; }")
  assert summary(sites) == [(SiteKind.LET, "State", None)]


def test_if_let_binding_is_scoped(locate):
  code = (
    ENUM
    + """
fn run(opt: Option<u8>) {
    let s = State::Idle;
    if let Some(s) = opt {
        let inner = s;
    }
    let outer = s;
}
"""
  )
  assert [s.snippet for s in locate(code)] == ["let s = State::Idle;", "let outer = s;"]


def test_const_contexts_skipped(locate):
  code = (
    ENUM
    + """
const fn make() -> State { let s = State::Idle; s }
const DEFAULT: State = { let s = State::Busy; s };
static CURRENT: State = State::Done;
fn run() {
    let x = const { State::Idle };
    let y = State::Busy;
}
"""
  )
  sites = locate(code)
  assert summary(sites) == [(SiteKind.LET, "State", "Busy")]


def test_const_contexts_can_be_included(locate):
  sites = locate(ENUM + "const fn make() -> State { let s = State::Idle; s }", skip_const_contexts=False)
  assert summary(sites) == [(SiteKind.LET, "State", "Idle")]


def test_cfg_attributes_are_recorded(locate):
  code = (
    ENUM
    + """
fn run() {
    let mut s = State::Idle;
    #[cfg(feature = "trace")]
    s = State::Busy;
}
"""
  )
  sites = locate(code)
  assert sites[0].cfg_attributes == ()
  assert sites[1].cfg_attributes == ('#[cfg(feature = "trace")]',)


def test_imported_variants(locate):
  code = "use State::*;\n" + ENUM + "fn run() { let s = Busy; }"
  assert summary(locate(code)) == [(SiteKind.LET, "State", "Busy")]


def test_known_enums_from_config(locate):
  code = "use proto::Phase;\nfn run() { let p = Phase::Ready; let q = Phase::Missing; }"
  sites = locate(code, known_enums={"Phase": ["Init", "Ready"]})
  assert summary(sites) == [(SiteKind.LET, "Phase", "Ready")]


def test_unknown_variant_policy_skip(locate):
  code = ENUM + "fn pick() -> State { State::Idle }\nfn run() { let a = pick(); let b = State::Done; }"
  sites = locate(code, unknown_variant_policy="skip")
  assert summary(sites) == [(SiteKind.LET, "State", "Done")]


def test_call_arguments_opt_in(locate):
  code = ENUM + "fn consume(s: State) {}\nfn run(v: State) { consume(State::Idle); consume(v); }"

  assert locate(code) == []
  sites = locate(code, instrument_call_arguments=True)
  assert summary(sites) == [(SiteKind.CALL_ARGUMENT, "State", "Idle")]


def test_non_enum_assignments_ignored(locate):
  code = """
struct Point { x: i32 }
fn run() {
    let mut p = Point { x: 1 };
    p.x = 2;
    let v = vec![1, 2];
}
"""
  assert locate(code) == []


def test_max_depth_guard(locate):
  code = ENUM + "fn run() { { { { { { let s = State::Idle; } } } } } }"
  with pytest.raises(AnalysisError):
    locate(code, max_depth=5)


@pytest.mark.parametrize(
  "body",
  [
    "let s = " + "{" * 1200 + "State::Idle" + "}" * 1200 + ";",
    "{" * 1200 + "let s = State::Idle;" + "}" * 1200,
  ],
)
def test_deep_nesting_hits_default_max_depth(locate, body):
  with pytest.raises(AnalysisError, match="max_depth=200"):
    locate(ENUM + "fn run() { " + body + " }")
