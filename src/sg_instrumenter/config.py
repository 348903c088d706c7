"""
Runtime Configuration Store.

Settings are resolved in three layers: model defaults, the
``[tool.sg_instrumenter]`` table of the nearest ``pyproject.toml``, and
explicit overrides (usually CLI flags).
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from sg_instrumenter.enums import UnknownVariantPolicy
from sg_instrumenter.errors import ConfigError

if sys.version_info >= (3, 11):
  import tomllib
else:
  import tomli as tomllib

DEFAULT_CALL_TEMPLATE = "sginstrument::instrument({state_id});"
LOCATION_CALL_TEMPLATE = "sginstrument::instrument({location_id}, {state_id});"


class InstrumenterConfig(BaseModel):
  """
  Global configuration container for the instrumentation engine.
  """

  call_template: str = Field(
    DEFAULT_CALL_TEMPLATE,
    description="Statement inserted at each site. Supports {state_id} and {location_id}.",
  )
  unknown_variant_policy: UnknownVariantPolicy = Field(
    UnknownVariantPolicy.WILDCARD,
    description="How sites with a runtime-only variant are handled.",
  )
  instrument_call_arguments: bool = Field(
    False, description="Also instrument unit variants passed directly as call arguments."
  )
  skip_const_contexts: bool = Field(True, description="Never instrument inside const fn / const / static.")
  share_declarations: bool = Field(
    True, description="In batch mode, let units see enums declared in other units they `use`."
  )
  known_enums: Dict[str, List[str]] = Field(
    default_factory=dict, description="Extra enum declarations (name -> variants) visible in every unit."
  )
  validate_output: bool = Field(True, description="Re-parse rewritten code and reject syntax errors.")
  max_depth: int = Field(200, description="Maximum syntax nesting the analyzer will follow.")
  jobs: int = Field(1, description="Worker threads used for batch processing.")
  extensions: List[str] = Field(default_factory=lambda: [".rs"], description="File suffixes picked up by the CLI.")

  @field_validator("call_template")
  @classmethod
  def validate_template(cls, v: str) -> str:
    """
    Ensures the template references the state ID and formats cleanly.

    Args:
        v (str): Raw template.

    Returns:
        str: The stripped template, terminated with ``;``.

    Raises:
        ValueError: If ``{state_id}`` is missing or unknown placeholders exist.
    """
    v_clean = v.strip()
    if "{state_id}" not in v_clean:
      raise ValueError("call_template must contain '{state_id}'")
    try:
      v_clean.format(state_id=0, location_id=0)
    except (KeyError, IndexError, ValueError) as e:
      raise ValueError(f"Invalid call_template placeholder: {e}")
    if not v_clean.endswith(";"):
      v_clean += ";"
    return v_clean

  @field_validator("known_enums")
  @classmethod
  def validate_known_enums(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
    """Drops duplicate variant names while keeping declaration order."""
    return {name: list(dict.fromkeys(variants)) for name, variants in v.items()}

  @field_validator("max_depth", "jobs")
  @classmethod
  def validate_positive(cls, v: int) -> int:
    if v < 1:
      raise ValueError("must be >= 1")
    return v

  @property
  def uses_location_ids(self) -> bool:
    """True if every inserted call carries a per-site location number."""
    return "{location_id}" in self.call_template

  def render_call(self, state_id: int, location_id: int = 0) -> str:
    """
    Formats the instrumentation statement for one site.

    Args:
        state_id (int): Allocated ID for the (type, variant) pair.
        location_id (int): Per-site location number.

    Returns:
        str: The statement text, e.g. ``sginstrument::instrument(3);``.
    """
    return self.call_template.format(state_id=state_id, location_id=location_id)

  @classmethod
  def load(
    cls,
    overrides: Optional[Dict[str, Any]] = None,
    search_path: Optional[Path] = None,
  ) -> "InstrumenterConfig":
    """
    Loads configuration from pyproject.toml and overrides it with explicit values.

    Args:
        overrides (Optional[Dict]): Values that win over the TOML table (e.g. CLI flags).
            Keys mapped to None are ignored.
        search_path (Optional[Path]): Directory to start searching for TOML config.

    Returns:
        InstrumenterConfig: The fully resolved configuration object.

    Raises:
        ConfigError: If the merged values fail validation.
    """
    start_dir = search_path or Path.cwd()
    toml_config, _ = _load_toml_settings(start_dir)

    merged = dict(toml_config)
    for key, value in (overrides or {}).items():
      if value is not None:
        merged[key] = value

    try:
      return cls.model_validate(merged)
    except ValidationError as e:
      raise ConfigError(f"Invalid configuration: {e}") from e


def _load_toml_settings(start_path: Path) -> Tuple[Dict[str, Any], Optional[Path]]:
  """
  Searches the start directory and its parents for 'pyproject.toml' and extracts config.

  Args:
      start_path (Path): Directory to start search from.

  Returns:
      Tuple[Dict, Optional[Path]]: The config dict and the directory it was found in.
  """
  current = start_path.resolve()
  if current.is_file():
    current = current.parent

  for parent in [current, *current.parents]:
    toml_path = parent / "pyproject.toml"
    if toml_path.is_file():
      try:
        with open(toml_path, "rb") as f:
          data = tomllib.load(f)
      except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {toml_path}: {e}") from e

      return data.get("tool", {}).get("sg_instrumenter", {}), parent

  return {}, None


def parse_cli_key_values(items: Optional[List[str]]) -> Dict[str, Any]:
  """
  Parses a list of 'key=value' strings into a dictionary.

  Types are inferred (int, bool, or string).

  Args:
      items (Optional[List[str]]): List of raw CLI strings directly from argparse.

  Returns:
      Dict[str, Any]: Parsed dictionary.

  Raises:
      ConfigError: If an item has no '='.
  """
  if not items:
    return {}

  config: Dict[str, Any] = {}
  for item in items:
    if "=" not in item:
      raise ConfigError(f"Invalid config format: '{item}'. Expected 'key=value'.")

    key, val_str = item.split("=", 1)
    key = key.strip()
    val_str = val_str.strip()

    final_val: Any = val_str
    if val_str.lower() == "true":
      final_val = True
    elif val_str.lower() == "false":
      final_val = False
    else:
      try:
        final_val = int(val_str)
      except ValueError:
        pass

    config[key] = final_val

  return config
